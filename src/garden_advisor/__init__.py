"""Scheduled garden analysis: AI care recommendations reconciled into a task list."""

__version__ = "0.1.0"
