"""PERT view of the task tree.

Contains utilities for:
- normalizing task dates (ISO strings or epoch milliseconds),
- computing a task duration in days,
- flattening the tree into the ``{id, name, duration}`` rows and
  ``{from, to}`` dependency edges a PERT chart consumes,
- detecting circular dependencies in those edges.
"""

import math
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .tree import iter_nodes


def _ensure_date(d: Any) -> Optional[date]:
    """Normalize an input to a `datetime.date`, or None when it cannot be read.

    Accepts:
      - date/datetime instance
      - ISO-like date string, optionally with time (e.g. '2025-11-30' or '2025-11-30T12:00:00Z')
      - int/float epoch milliseconds, as the chart library stores them
    """
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    if isinstance(d, bool):
        return None
    if isinstance(d, (int, float)):
        try:
            return datetime.fromtimestamp(d / 1000.0, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(d, str) and d.strip():
        text = d.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(text.split("T", 1)[0])
            except ValueError:
                return None
    return None


def _duration_value(raw: Any) -> float:
    """Day count from a plain number or a structured duration.

    Structured values come as ``{"magnitude": 3, "unit": "DAYS"}`` or in the
    chart's own spelling ``{"m_duration": 17.6, "m_units": "DAYS"}``.
    Non-day units are read as hours or weeks where recognisable.
    """
    unit = "DAYS"
    if isinstance(raw, dict):
        unit = str(raw.get("unit") or raw.get("m_units") or "DAYS").upper()
        raw = raw.get("magnitude", raw.get("m_duration"))
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if unit.startswith("HOUR"):
        value = value / 24.0
    elif unit.startswith("WEEK"):
        value = value * 7.0
    # inf/nan are not representable in the JSON response
    if not math.isfinite(value):
        return 0.0
    return value


def task_duration(task: Dict[str, Any]) -> float:
    """Duration in days, never below one.

    Uses the actual start/end dates (``actualStart`` or ``actualStartDate``,
    likewise for the end) when both are readable, otherwise the stored
    ``duration`` field.
    """
    start = _ensure_date(task.get("actualStart") or task.get("actualStartDate"))
    end = _ensure_date(task.get("actualEnd") or task.get("actualEndDate"))
    if start is not None and end is not None:
        days = float((end - start).days)
    else:
        days = _duration_value(task.get("duration"))
    return max(1.0, days)


def _predecessors(task: Dict[str, Any]) -> List[Any]:
    found: List[Any] = []
    connect_to = task.get("connectTo")
    if connect_to not in (None, ""):
        found.append(connect_to)
    connectors = task.get("connector")
    if isinstance(connectors, dict):
        connectors = [connectors]
    if isinstance(connectors, list):
        for conn in connectors:
            if isinstance(conn, dict) and conn.get("connectTo") not in (None, ""):
                found.append(conn["connectTo"])
    return found


def flatten_for_pert(nodes: Any) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Return ``(rows, dependencies)`` for the whole tree in pre-order."""
    rows: List[Dict[str, Any]] = []
    dependencies: List[Dict[str, Any]] = []
    seen_edges = set()
    for task in iter_nodes(nodes):
        task_id = task.get("id")
        rows.append({"id": task_id, "name": task.get("name"), "duration": task_duration(task)})
        for pred in _predecessors(task):
            key = (str(pred), str(task_id))
            if key in seen_edges:
                continue
            seen_edges.add(key)
            dependencies.append({"from": pred, "to": task_id})
    return rows, dependencies


def detect_circular_dependencies(dependencies: Sequence[Dict[str, Any]]) -> List[List[str]]:
    """Detect cycles in the dependency graph.

    Args:
        dependencies: ``{"from": a, "to": b}`` edges; ids are compared as strings.

    Returns:
        A list of cycles, each the node path closing on itself
        (e.g. ['1', '1'] for a self-dependency, or ['1', '2', '3', '1']).
    """
    graph: Dict[str, List[str]] = {}
    for edge in dependencies:
        src, dst = str(edge.get("from")), str(edge.get("to"))
        targets = graph.setdefault(src, [])
        graph.setdefault(dst, [])
        if dst not in targets:
            targets.append(dst)

    visited = set()            # permanently visited nodes
    stack: List[str] = []      # current DFS stack
    cycles: List[List[str]] = []
    seen_cycles: set = set()   # canonical tuple of cycle used to dedupe

    def dfs(node: str) -> None:
        if node in stack:
            idx_in_stack = stack.index(node)
            cycle = stack[idx_in_stack:] + [node]
            # rotate so the smallest id leads, for dedupe
            min_idx = min(range(len(cycle) - 1), key=lambda i: cycle[i])
            ordered = cycle[min_idx:-1] + cycle[:min_idx] + [cycle[min_idx]]
            tup = tuple(ordered)
            if tup not in seen_cycles:
                seen_cycles.add(tup)
                cycles.append(ordered)
            return
        if node in visited:
            return

        visited.add(node)
        stack.append(node)
        for neighbour in graph.get(node, []):
            dfs(neighbour)
        stack.pop()

    for n in list(graph.keys()):
        if n not in visited:
            dfs(n)

    return cycles
