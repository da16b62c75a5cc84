"""Persistent cycle checkpoints."""

from .manager import CycleCheckpoint, StateManager

__all__ = ["CycleCheckpoint", "StateManager"]
