"""
Task management service - lifecycle operations after creation.

This module handles:
    - Starting and completing tasks (workers)
    - Cancelling tasks (customers)
    - Rating completed tasks
"""

from .task_lifecycle import (
    TaskResult,
    cancel_task,
    complete_task,
    rate_task,
    start_task,
)

__all__ = [
    "TaskResult",
    "cancel_task",
    "complete_task",
    "rate_task",
    "start_task",
]
