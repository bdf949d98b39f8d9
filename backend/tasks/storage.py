"""File-backed persistence for the task tree.

The whole tree lives in one JSON document. Every operation re-reads the
file, works on a fresh in-memory copy and, for mutations, rewrites the
entire document. There is no locking: two concurrent mutations race and
the last writer wins.
"""

import json
import logging
import os
import stat
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings

from .exceptions import StorageError, TaskNotFound
from .tree import Node, append_child, collect_ids, find_by_id, merge_fields

logger = logging.getLogger(__name__)

ID_PREFIX = "task_"
NEW_FILE_MODE = 0o644


def mint_id(existing_ids: Iterable[str] = ()) -> str:
    """Return a new task id that is not in ``existing_ids``."""
    taken = set(existing_ids)
    while True:
        candidate = f"{ID_PREFIX}{uuid.uuid4().hex}"
        if candidate not in taken:
            return candidate


class TaskTreeStore:
    """Reads and rewrites the JSON task tree at ``path``."""

    def __init__(self, path):
        self.path = Path(path)

    @classmethod
    def from_settings(cls) -> "TaskTreeStore":
        return cls(settings.GANTT_DATA_FILE)

    def load(self) -> List[Node]:
        """Return the stored roots; any read problem degrades to an empty tree."""
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else []
        except (OSError, ValueError) as exc:
            logger.error("Could not read task tree %s: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Ignoring task tree %s: expected a JSON array, got %s",
                           self.path, type(data).__name__)
            return []
        return data

    def save(self, nodes: Any) -> None:
        """Rewrite the whole document; raises StorageError on failure."""
        tmp_name = None
        try:
            # Infinity/NaN are not valid JSON
            payload = json.dumps(nodes, indent=2, ensure_ascii=False, allow_nan=False)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent,
                prefix=f".{self.path.name}.", suffix=".tmp", delete=False,
            ) as fh:
                tmp_name = fh.name
                fh.write(payload)
            # temp files are created 0600; keep the document's existing mode
            if self.path.exists():
                mode = stat.S_IMODE(self.path.stat().st_mode)
            else:
                mode = NEW_FILE_MODE
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Could not write task tree %s: %s", self.path, exc)
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(self.path, exc) from exc

    def replace_all(self, nodes: List[Node]) -> None:
        self.save(nodes)
        logger.info("Bulk saved %d root task(s) to %s", len(nodes), self.path)

    def update_task(self, task_id: Any, fields: Dict[str, Any]) -> Node:
        """Merge ``fields`` into the task with ``task_id`` and persist the tree."""
        nodes = self.load()
        node = find_by_id(nodes, task_id)
        if node is None:
            raise TaskNotFound(task_id)
        merge_fields(node, fields)
        self.save(nodes)
        logger.info("Updated task %s", task_id)
        return node

    def add_task(self, fields: Dict[str, Any], parent_id: Optional[Any] = None) -> Node:
        """Create a task under ``parent_id`` (or at root when it is empty).

        The new id is always minted here; an ``id`` or ``children`` in
        ``fields`` is ignored.
        """
        nodes = self.load()
        parent = None
        if parent_id not in (None, ""):
            parent = find_by_id(nodes, parent_id)
            if parent is None:
                raise TaskNotFound(parent_id, parent=True)

        new_task = dict(fields)
        new_task["id"] = mint_id(collect_ids(nodes))
        new_task["children"] = []

        if parent is None:
            nodes.append(new_task)
        else:
            append_child(parent, new_task)
        self.save(nodes)
        logger.info("Added task %s under %s", new_task["id"],
                    parent_id if parent is not None else "ROOT")
        return new_task
