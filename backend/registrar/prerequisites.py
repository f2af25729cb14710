from __future__ import annotations

from typing import Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import Completion, Course, CoursePrerequisite


def prerequisite_codes(db: Session, course_id: str) -> list[str]:
    rows = db.scalars(
        select(CoursePrerequisite.required_code).where(CoursePrerequisite.course_id == course_id).order_by(CoursePrerequisite.required_code)
    ).all()
    return list(rows)


def prerequisite_graph(db: Session) -> dict[str, list[str]]:
    graph: dict[str, list[str]] = {code: [] for code in db.scalars(select(Course.code)).all()}
    rows = db.execute(
        select(Course.code, CoursePrerequisite.required_code).join(CoursePrerequisite, CoursePrerequisite.course_id == Course.id)
    ).all()
    for code, required in rows:
        graph.setdefault(code, []).append(required)
    return graph


def completed_codes(db: Session, user_id: str) -> set[str]:
    return set(db.scalars(select(Completion.course_code).where(Completion.user_id == user_id)).all())


def missing_prerequisites(required: Iterable[str], completed: Iterable[str]) -> list[str]:
    done = set(completed)
    return [code for code in required if code not in done]


def prerequisite_chain_length(code: str, graph: Mapping[str, Iterable[str]], visited: Optional[frozenset[str]] = None) -> int:
    """Longest prerequisite path below ``code``.

    ``visited`` holds the codes on the current path only. A code reached again
    through a cycle contributes 0 instead of recursing forever.
    """
    path = visited or frozenset()
    if code in path:
        return 0
    requires = list(graph.get(code) or ())
    if not requires:
        return 0
    path = path | {code}
    return 1 + max(prerequisite_chain_length(req, graph, path) for req in requires)
