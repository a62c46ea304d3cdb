"""
CLI tools for mongoent administration.

This module provides command-line tools for:
- indexes: List, drop and ensure collection indexes

Invariants:
    - Tools read connection settings from MONGOENT_* environment variables
    - All operations are logged
"""

from .indexes_cli import IndexesCLI, setup_logging

__all__ = ["IndexesCLI", "setup_logging"]
