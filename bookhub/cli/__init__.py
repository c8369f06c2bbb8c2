"""Command line entry points for bookhub."""

from .main import main, run_sync

__all__ = ["main", "run_sync"]
