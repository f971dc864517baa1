from __future__ import annotations

from .app import SearchCLIOptions, app, main, run_recall, run_search

__all__ = ["SearchCLIOptions", "app", "main", "run_recall", "run_search"]
