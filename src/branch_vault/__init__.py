"""
Branch Vault - versioned backups partitioned by environment branch.

Dumps a PostgreSQL database and exports application objects over HTTP,
commits both to a git branch named after the deployment environment
only when they changed, and prunes artifacts past a retention window.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
