"""
Task Graph Evaluator

Computes blocked/ready status from `depends_on` edges.

Blocking is a one-hop check: a task is blocked when any task it directly
depends on is not done. Nothing here walks the graph transitively, so
cyclic or self-referencing dependencies always terminate. Dependency ids
that resolve to no task are ignored.

Functions accept any objects exposing `id`, `project_id`, `status`,
`priority`, `depends_on` and `archived` (ORM rows or API schemas) and never
mutate them.
"""
from collections.abc import Iterable, Mapping
from typing import Any

from flux.models.task import DEFAULT_PRIORITY, TaskStatus


def index_tasks(tasks: Iterable[Any]) -> dict[str, Any]:
    """Build an id -> task lookup."""
    return {task.id: task for task in tasks}


def effective_priority(task: Any) -> int:
    """Priority used for sorting; missing priority counts as P2."""
    return DEFAULT_PRIORITY if task.priority is None else task.priority


def get_blocking_tasks(task: Any, tasks_by_id: Mapping[str, Any]) -> list[Any]:
    """
    Return the direct dependencies of a task that are not done yet.

    Dangling ids are skipped; duplicates are reported once, in the order
    they first appear in `depends_on`.
    """
    blocking = []
    seen = set()
    for dep_id in task.depends_on or ():
        if dep_id in seen:
            continue
        seen.add(dep_id)
        dep = tasks_by_id.get(dep_id)
        if dep is not None and dep.status != TaskStatus.DONE:
            blocking.append(dep)
    return blocking


def is_blocked(task: Any, tasks_by_id: Mapping[str, Any]) -> bool:
    """True iff at least one resolvable dependency is not done."""
    for dep_id in task.depends_on or ():
        dep = tasks_by_id.get(dep_id)
        if dep is not None and dep.status != TaskStatus.DONE:
            return True
    return False


def get_ready_tasks(project_id: str | None, tasks: Iterable[Any]) -> list[Any]:
    """
    Tasks that can be worked on right now, highest priority first.

    A task is ready when it is not done, not archived and not blocked.
    When `project_id` is given, only that project's tasks are returned;
    dependencies are still resolved against the full task set.

    Ordering is a stable sort on effective priority, so tasks of equal
    priority keep their input (creation) order.
    """
    tasks = list(tasks)
    tasks_by_id = index_tasks(tasks)

    ready = [
        task for task in tasks
        if (project_id is None or task.project_id == project_id)
        and task.status != TaskStatus.DONE
        and not task.archived
        and not is_blocked(task, tasks_by_id)
    ]
    return sorted(ready, key=effective_priority)
