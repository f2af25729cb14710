from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from .db import CourseClass, User
from .errors import AuthorizationFailed


@dataclass(frozen=True)
class StudentActor:
    role: ClassVar[str] = "student"
    id: str
    name: str


@dataclass(frozen=True)
class InstructorActor:
    role: ClassVar[str] = "instructor"
    id: str
    name: str

    def teaches(self, cls: CourseClass) -> bool:
        return cls.instructor_name == self.name


@dataclass(frozen=True)
class AdminActor:
    role: ClassVar[str] = "admin"
    id: str
    name: str


Actor = Union[StudentActor, InstructorActor, AdminActor]

_ACTOR_BY_ROLE = {cls.role: cls for cls in (StudentActor, InstructorActor, AdminActor)}


def actor_for(user: User) -> Actor:
    actor_cls = _ACTOR_BY_ROLE.get(user.role)
    if actor_cls is None:
        raise AuthorizationFailed(f"Unknown role {user.role!r}")
    return actor_cls(id=user.id, name=user.name)


def require_admin(actor: Actor) -> AdminActor:
    if not isinstance(actor, AdminActor):
        raise AuthorizationFailed("admin role required")
    return actor


def require_student(actor: Actor) -> StudentActor:
    if not isinstance(actor, StudentActor):
        raise AuthorizationFailed("student role required")
    return actor


def require_instructor(actor: Actor) -> InstructorActor:
    if not isinstance(actor, InstructorActor):
        raise AuthorizationFailed("instructor role required")
    return actor


def require_class_instructor(actor: Actor, cls: CourseClass) -> InstructorActor:
    instructor = require_instructor(actor)
    if not instructor.teaches(cls):
        raise AuthorizationFailed(f"You are not the instructor of class {cls.class_code}")
    return instructor


def require_admin_or_class_instructor(actor: Actor, cls: CourseClass) -> Actor:
    if isinstance(actor, AdminActor):
        return actor
    return require_class_instructor(actor, cls)
