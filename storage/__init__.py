"""Persistence for finalized screens, templates and instances."""

from .database import WorkflowDatabase

__all__ = [
    "WorkflowDatabase",
]
