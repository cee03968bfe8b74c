"""Workflow state and context synchronization engine for role-based task hand-offs."""

__version__ = "0.1.0"
