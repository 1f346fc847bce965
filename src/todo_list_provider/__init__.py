"""
todo-list-provider — package root

File: src/todo_list_provider/__init__.py

Purpose
- Lifecycle management for the single embedded SQLite database shared by the
  todo-list application: lazy, race-free opening and versioned schema setup.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init,
  no database access).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
