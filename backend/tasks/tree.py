"""In-memory helpers for the hierarchical task tree.

The tree is the plain JSON structure persisted on disk: a list of root
task dicts, each optionally holding a ``children`` list of the same shape.
Helpers here never copy nodes; they return and mutate references into the
caller's tree so that a later save writes the change back.
"""

from typing import Any, Dict, Iterator, List, Optional, Set

Node = Dict[str, Any]


def iter_nodes(nodes: Any) -> Iterator[Node]:
    """Yield every node in pre-order (parent before children, children in order)."""
    if not isinstance(nodes, list):
        return
    for node in nodes:
        if not isinstance(node, dict):
            continue
        yield node
        children = node.get("children")
        if children:
            yield from iter_nodes(children)


def find_by_id(nodes: Any, task_id: Any) -> Optional[Node]:
    """Return the first node whose id matches ``task_id``, or None.

    Ids are compared as strings so that ``1`` and ``"1"`` match; persisted
    data mixes numeric and string ids.
    """
    wanted = str(task_id)
    for node in iter_nodes(nodes):
        if str(node.get("id")) == wanted:
            return node
    return None


def collect_ids(nodes: Any) -> Set[str]:
    return {str(node.get("id")) for node in iter_nodes(nodes) if "id" in node}


def merge_fields(node: Node, fields: Dict[str, Any]) -> Node:
    """Overwrite the keys present in ``fields`` and leave the rest alone."""
    node.update(fields)
    return node


def append_child(parent: Node, child: Node) -> Node:
    children: Optional[List[Node]] = parent.get("children")
    if not isinstance(children, list):
        children = []
        parent["children"] = children
    children.append(child)
    return child
