"""
Turns raw funnel_step rows into one step sequence per session.

Rows may arrive duplicated and in any order. Ordering comes from the
event's own client timestamp, never from insertion order, and a step
repeated back-to-back (reload, duplicate delivery) is collapsed.
"""

from __future__ import annotations

from typing import Iterable


StepRow = tuple[str, str, int]


def append_step(path: list[str], step_name: str) -> bool:
    if path and path[-1] == step_name:
        return False
    path.append(step_name)
    return True


def build_session_paths(rows: Iterable[StepRow]) -> dict[str, list[str]]:
    # sorted() is stable, so rows with equal timestamps keep their storage order.
    ordered = sorted(rows, key=lambda row: (row[0], row[2]))
    paths: dict[str, list[str]] = {}
    for session_id, step_name, _timestamp in ordered:
        if not session_id or not step_name:
            continue
        append_step(paths.setdefault(session_id, []), step_name)
    return paths
