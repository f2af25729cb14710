"""Registration lifecycle for a (course, class, student) triple.

    unregistered --register--> pending --approve / validate_class--> approved
    pending --cancel_registration--> unregistered
    approved --grade--> removed (passing grades become a Completion)

Every transition checks its preconditions against freshly read rows while
holding the class lock, mutates, and commits before releasing the lock. A
rejected transition raises a :class:`~registrar.errors.RegistrarError` and
leaves nothing to roll back.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from . import config
from .catalog import class_roster, courses_by_codes, find_class, find_course, find_user
from .db import Completion, Course, CourseClass, Registration
from .errors import NotFound, PreconditionFailed, Reason, ValidationFailed
from .prerequisites import completed_codes, missing_prerequisites, prerequisite_codes
from .roles import Actor, require_admin, require_admin_or_class_instructor, require_class_instructor, require_student

logger = logging.getLogger(__name__)


class ClassLockRegistry:
    """One lock per class id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, class_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(class_id, threading.Lock())

    @contextmanager
    def hold(self, class_id: str):
        with self.lock_for(class_id):
            yield


def _reject(reason: Reason, message: str) -> PreconditionFailed:
    logger.warning("rejected: %s (%s)", message, reason.value)
    return PreconditionFailed(reason, message)


def _find_registration(db: Session, cls: CourseClass, student_id: str) -> Registration:
    reg = db.scalar(select(Registration).where(Registration.class_id == cls.id, Registration.student_id == student_id))
    if not reg:
        raise NotFound(f"Student {student_id} is not registered in class {cls.class_code}")
    return reg


def _settle_grading(db: Session, cls: CourseClass) -> None:
    """Mark grading complete once a class that has graded someone has nobody left to grade."""
    db.flush()
    if cls.graded and not class_roster(db, cls.id):
        cls.grading_complete = True


def _locate(db: Session, code: str, class_code: str) -> tuple[Course, CourseClass]:
    course = find_course(db, code)
    return course, find_class(db, course, class_code)


def register(db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str) -> Registration:
    student = require_student(actor)
    course, cls = _locate(db, code, class_code)
    with locks.hold(cls.id):
        db.refresh(course)
        db.refresh(cls)
        if cls.status == "cancelled":
            raise _reject(Reason.CLASS_CLOSED, f"Class {cls.class_code} has been cancelled")
        if course.status != "open":
            raise _reject(Reason.CLASS_CLOSED, f"Course {course.code} is not open for registration")
        roster = class_roster(db, cls.id)
        if any(r.student_id == student.id for r in roster):
            raise _reject(Reason.ALREADY_REGISTERED, f"You're already registered for class {cls.class_code}")
        missing = missing_prerequisites(prerequisite_codes(db, course.id), completed_codes(db, student.id))
        if missing:
            raise _reject(Reason.PREREQUISITE_MISSING, f"You must complete all prerequisites for {course.name}: {', '.join(missing)}")
        if len(roster) >= cls.capacity:
            raise _reject(Reason.CLASS_FULL, f"Class {cls.class_code} is full")

        reg = Registration(class_id=cls.id, student_id=student.id, status="pending")
        db.add(reg)
        cls.grading_complete = False
        db.commit()
    db.refresh(reg)
    logger.info("student %s registered for %s/%s (pending)", student.id, course.code, cls.class_code)
    return reg


def cancel_registration(db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str) -> None:
    student = require_student(actor)
    course, cls = _locate(db, code, class_code)
    with locks.hold(cls.id):
        db.refresh(cls)
        reg = _find_registration(db, cls, student.id)
        db.refresh(reg)
        if reg.status != "pending":
            raise _reject(Reason.NOT_PENDING, f"Only pending registrations can be cancelled (status is {reg.status})")
        db.delete(reg)
        _settle_grading(db, cls)
        db.commit()
    logger.info("student %s cancelled registration for %s/%s", student.id, course.code, cls.class_code)


def approve(db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str, student_id: str) -> Registration:
    course, cls = _locate(db, code, class_code)
    require_admin_or_class_instructor(actor, cls)
    with locks.hold(cls.id):
        db.refresh(cls)
        if cls.status == "cancelled":
            raise _reject(Reason.CLASS_CLOSED, f"Class {cls.class_code} has been cancelled")
        reg = _find_registration(db, cls, student_id)
        db.refresh(reg)
        if reg.status != "pending":
            raise _reject(Reason.NOT_PENDING, f"Registration of {student_id} is already {reg.status}")
        reg.status = "approved"
        db.commit()
    db.refresh(reg)
    logger.info("%s %s approved %s for %s/%s", actor.role, actor.id, student_id, course.code, cls.class_code)
    return reg


def normalize_grade(raw: str) -> str:
    grade = str(raw or "").strip().upper()
    if grade not in config.GRADES:
        raise ValidationFailed(f"Grade must be one of {', '.join(config.GRADES)}")
    return grade


def _record_completion(db: Session, course: Course, student_id: str, grade: str) -> Completion:
    row = db.scalar(select(Completion).where(Completion.user_id == student_id, Completion.course_code == course.code))
    if row:
        row.grade = grade
        return row
    position = db.scalar(select(func.count(Completion.id)).where(Completion.user_id == student_id)) or 0
    row = Completion(
        user_id=student_id,
        course_code=course.code,
        course_name=course.name,
        description=course.description,
        grade=grade,
        position=position,
    )
    db.add(row)
    return row


def grade(db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str, student_id: str, letter: str) -> dict:
    """Record a final grade and consume the registration.

    Anything but ``F`` writes (or overwrites) the student's completion for the
    course. ``F`` leaves completions alone, including an earlier pass.
    """
    letter = normalize_grade(letter)
    course, cls = _locate(db, code, class_code)
    require_class_instructor(actor, cls)
    find_user(db, student_id)
    with locks.hold(cls.id):
        db.refresh(cls)
        if cls.status == "cancelled":
            raise _reject(Reason.CLASS_CLOSED, f"Class {cls.class_code} has been cancelled")
        reg = _find_registration(db, cls, student_id)
        db.refresh(reg)
        if reg.status != "approved":
            raise _reject(Reason.NOT_APPROVED, f"Registration of {student_id} has not been approved")

        completion = None
        if letter != config.FAILING_GRADE:
            completion = _record_completion(db, course, student_id, letter)
        db.delete(reg)
        cls.graded = (cls.graded or 0) + 1
        _settle_grading(db, cls)
        db.commit()
    logger.info("instructor %s graded %s %s in %s/%s", actor.id, student_id, letter, course.code, cls.class_code)
    return {
        "studentId": student_id,
        "grade": letter,
        "completion": None if completion is None else {"code": completion.course_code, "grade": completion.grade},
        "gradingComplete": cls.grading_complete,
    }


def validate_class(
    db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str, minimum: Optional[int] = None
) -> dict:
    require_admin(actor)
    minimum = config.MIN_STUDENTS_TO_VALIDATE if minimum is None else minimum
    course, cls = _locate(db, code, class_code)
    with locks.hold(cls.id):
        db.refresh(cls)
        if cls.status == "cancelled":
            raise _reject(Reason.CLASS_CLOSED, f"Class {cls.class_code} has been cancelled")
        if cls.status == "validated":
            logger.info("class %s/%s already validated", course.code, cls.class_code)
            return {"status": cls.status, "approved": 0}
        roster = class_roster(db, cls.id)
        if len(roster) < minimum:
            raise _reject(
                Reason.BELOW_MINIMUM_ENROLLMENT,
                f"Cannot validate class. Requires at least {minimum} students (currently {len(roster)})",
            )
        approved = 0
        for reg in roster:
            if reg.status == "pending":
                reg.status = "approved"
                approved += 1
        cls.status = "validated"
        db.commit()
    logger.info("admin %s validated %s/%s, %d registrations approved", actor.id, course.code, cls.class_code, approved)
    return {"status": "validated", "approved": approved}


def cancel_class(
    db: Session, actor: Actor, locks: ClassLockRegistry, code: str, class_code: str, revoke_completions: Optional[bool] = None
) -> dict:
    """Cancel a class for good.

    Its roster is purged. With ``revoke_completions`` (the
    ``CANCEL_REVOKES_COMPLETIONS`` policy by default) every user's completion
    for the course is deleted as well, whichever class it was earned in.
    """
    require_admin(actor)
    if revoke_completions is None:
        revoke_completions = config.CANCEL_REVOKES_COMPLETIONS
    course, cls = _locate(db, code, class_code)
    with locks.hold(cls.id):
        db.refresh(cls)
        if cls.status == "cancelled":
            return {"status": "cancelled", "registrationsRemoved": 0, "completionsRevoked": 0}
        cls.status = "cancelled"
        removed = db.execute(delete(Registration).where(Registration.class_id == cls.id)).rowcount
        revoked = 0
        if revoke_completions:
            revoked = db.execute(delete(Completion).where(Completion.course_code == course.code)).rowcount
        db.commit()
    logger.info(
        "admin %s cancelled %s/%s: %d registrations removed, %d completions revoked", actor.id, course.code, cls.class_code, removed, revoked
    )
    return {"status": "cancelled", "registrationsRemoved": removed, "completionsRevoked": revoked}


def set_course_status(db: Session, actor: Actor, code: str, status: str) -> Course:
    require_admin(actor)
    if status not in config.COURSE_STATUSES:
        raise ValidationFailed(f"Course status must be one of {', '.join(config.COURSE_STATUSES)}")
    course = find_course(db, code)
    course.status = status
    db.commit()
    db.refresh(course)
    logger.info("admin %s set course %s to %s", actor.id, code, status)
    return course


def publish_courses(db: Session, actor: Actor, codes: Iterable[str]) -> list[Course]:
    require_admin(actor)
    courses = courses_by_codes(db, codes)
    for course in courses:
        course.status = "open"
    db.commit()
    logger.info("admin %s published %s", actor.id, ", ".join(c.code for c in courses))
    return courses
