"""API route handlers."""
from . import audit, changes, sync

__all__ = ["audit", "changes", "sync"]
