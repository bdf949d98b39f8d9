"""Errors raised by the task tree store."""

from typing import Any, Optional


class TaskTreeError(Exception):
    """Base class for task tree failures."""


class TaskNotFound(TaskTreeError):
    """A referenced task id does not exist in the tree."""

    def __init__(self, task_id: Any, parent: bool = False):
        self.task_id = task_id
        self.parent = parent
        kind = "Parent" if parent else "Task"
        super().__init__(f"{kind} ID not found: {task_id!r}")


class StorageError(TaskTreeError):
    """The persisted document could not be written."""

    def __init__(self, path, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")
