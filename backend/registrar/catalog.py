"""Catalog reads and admin catalog edits.

Lookups here raise :class:`NotFound`; payload builders produce the nested
course -> classes -> registrations shape the HTTP layer returns.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import config
from .db import Completion, Course, CourseClass, CourseInterest, CoursePrerequisite, Registration, User
from .errors import NotFound, ValidationFailed
from .prerequisites import prerequisite_chain_length, prerequisite_codes, prerequisite_graph
from .roles import InstructorActor, StudentActor

logger = logging.getLogger(__name__)

DAY_ORDER = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
SORT_KEYS = ("code", "name", "prerequisite_depth")


def find_course(db: Session, code: str) -> Course:
    course = db.scalar(select(Course).where(Course.code == code))
    if not course:
        raise NotFound(f"Course {code} not found")
    return course


def find_class(db: Session, course: Course, class_code: str) -> CourseClass:
    cls = db.scalar(select(CourseClass).where(CourseClass.course_id == course.id, CourseClass.class_code == class_code))
    if not cls:
        raise NotFound(f"Class {class_code} not found in course {course.code}")
    return cls


def find_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def class_roster(db: Session, class_id: str) -> list[Registration]:
    return list(db.scalars(select(Registration).where(Registration.class_id == class_id).order_by(Registration.created_at, Registration.id)).all())


def classes_of(db: Session, course_id: str) -> list[CourseClass]:
    return list(db.scalars(select(CourseClass).where(CourseClass.course_id == course_id).order_by(CourseClass.position, CourseClass.class_code)).all())


def completions_of(db: Session, user_id: str) -> list[Completion]:
    return list(db.scalars(select(Completion).where(Completion.user_id == user_id).order_by(Completion.position, Completion.course_code)).all())


def registration_payload(reg: Registration) -> dict:
    return {"studentId": reg.student_id, "status": reg.status, "grade": reg.grade}


def class_payload(db: Session, cls: CourseClass) -> dict:
    return {
        "classId": cls.class_code,
        "instructor": cls.instructor_name,
        "schedule": cls.schedule,
        "capacity": cls.capacity,
        "status": cls.status,
        "gradingComplete": cls.grading_complete,
        "registeredStudents": [registration_payload(r) for r in class_roster(db, cls.id)],
    }


def course_payload(db: Session, course: Course, depth: Optional[int] = None) -> dict:
    out = {
        "code": course.code,
        "name": course.name,
        "category": course.category,
        "description": course.description,
        "prerequisites": prerequisite_codes(db, course.id),
        "status": course.status,
        "classes": [class_payload(db, c) for c in classes_of(db, course.id)],
    }
    if depth is not None:
        out["prerequisiteDepth"] = depth
    return out


def completion_payload(row: Completion) -> dict:
    return {"code": row.course_code, "name": row.course_name, "grade": row.grade, "description": row.description}


def user_payload(db: Session, user: User) -> dict:
    out = {"id": user.id, "username": user.username, "name": user.name, "role": user.role}
    if user.role == "student":
        out["completedCourses"] = [completion_payload(c) for c in completions_of(db, user.id)]
    if user.role == "instructor":
        out["expertise"] = split_codes(user.expertise)
    return out


def split_codes(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw)
    return [str(x).strip() for x in items if str(x).strip()]


def search_courses(
    db: Session,
    q: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    instructor: Optional[InstructorActor] = None,
    sort_by: str = "code",
) -> list[dict]:
    if sort_by not in SORT_KEYS:
        raise ValidationFailed(f"sort_by must be one of {', '.join(SORT_KEYS)}")
    stmt = select(Course)
    if q:
        term = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            func.lower(Course.name).like(term) | func.lower(Course.code).like(term) | func.lower(func.coalesce(Course.category, "")).like(term)
        )
    if category and category.lower() != "all":
        stmt = stmt.where(func.lower(Course.category) == category.lower())
    if status:
        stmt = stmt.where(Course.status == status)
    if instructor is not None:
        taught = select(CourseClass.course_id).where(CourseClass.instructor_name == instructor.name)
        stmt = stmt.where(Course.id.in_(taught))
    courses = db.scalars(stmt.order_by(Course.code)).all()

    if sort_by == "prerequisite_depth":
        graph = prerequisite_graph(db)
        depths = {c.code: prerequisite_chain_length(c.code, graph) for c in courses}
        ordered = sorted(courses, key=lambda c: (depths[c.code], c.code))
        return [course_payload(db, c, depth=depths[c.code]) for c in ordered]
    if sort_by == "name":
        courses = sorted(courses, key=lambda c: (c.name.lower(), c.code))
    return [course_payload(db, c) for c in courses]


def _check_class_data(data: dict) -> str:
    class_code = str(data.get("classId") or "").strip()
    if not class_code:
        raise ValidationFailed("classId is required")
    capacity = data.get("capacity")
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise ValidationFailed(f"Class {class_code} capacity must be a positive integer")
    return class_code


def _add_class(db: Session, course: Course, data: dict, position: int) -> CourseClass:
    class_code = _check_class_data(data)
    capacity = data["capacity"]
    exists = db.scalar(select(CourseClass.id).where(CourseClass.course_id == course.id, CourseClass.class_code == class_code))
    if exists:
        raise ValidationFailed(f"Class {class_code} already exists in course {course.code}")
    cls = CourseClass(
        course_id=course.id,
        class_code=class_code,
        instructor_name=data.get("instructor"),
        schedule=data.get("schedule"),
        capacity=capacity,
        status="pending",
        position=position,
    )
    db.add(cls)
    db.flush()
    return cls


def create_course(db: Session, data: dict) -> Course:
    code = str(data.get("code") or "").strip()
    name = str(data.get("name") or "").strip()
    if not code or not name:
        raise ValidationFailed("code and name are required")
    if db.scalar(select(Course.id).where(Course.code == code)):
        raise ValidationFailed(f"A course with code {code} already exists")
    status = data.get("status") or "draft"
    if status not in config.COURSE_STATUSES:
        raise ValidationFailed(f"Unknown course status {status!r}")
    prerequisites = list(dict.fromkeys(split_codes(data.get("prerequisites"))))
    if code in prerequisites:
        raise ValidationFailed("Course cannot require itself")
    classes = list(data.get("classes") or [])
    class_codes = [_check_class_data(c) for c in classes]
    if len(set(class_codes)) != len(class_codes):
        raise ValidationFailed("classId must be unique within a course")

    course = Course(code=code, name=name, category=data.get("category"), description=data.get("description"), status=status)
    db.add(course)
    db.flush()
    for required in prerequisites:
        db.add(CoursePrerequisite(course_id=course.id, required_code=required))
    for position, cls in enumerate(classes):
        _add_class(db, course, cls, position)
    db.commit()
    db.refresh(course)
    logger.info("created course %s with %d classes", course.code, len(classes))
    return course


def add_class(db: Session, course: Course, data: dict) -> CourseClass:
    position = db.scalar(select(func.count(CourseClass.id)).where(CourseClass.course_id == course.id)) or 0
    cls = _add_class(db, course, data, position)
    db.commit()
    db.refresh(cls)
    logger.info("added class %s to course %s", cls.class_code, course.code)
    return cls


def learning_path(db: Session, student: StudentActor) -> dict:
    rows = db.execute(
        select(Registration, CourseClass, Course)
        .join(CourseClass, CourseClass.id == Registration.class_id)
        .join(Course, Course.id == CourseClass.course_id)
        .where(Registration.student_id == student.id)
        .order_by(Course.code, CourseClass.class_code)
    ).all()
    in_progress, pending = [], []
    for reg, cls, course in rows:
        item = {
            "code": course.code,
            "name": course.name,
            "description": course.description,
            "classId": cls.class_code,
            "instructor": cls.instructor_name,
            "schedule": cls.schedule,
        }
        (pending if reg.status == "pending" else in_progress).append(item)
    return {
        "completed": [completion_payload(c) for c in completions_of(db, student.id)],
        "inProgress": in_progress,
        "pending": pending,
    }


def instructor_classes(db: Session, instructor: InstructorActor) -> list[dict]:
    rows = db.execute(
        select(CourseClass, Course)
        .join(Course, Course.id == CourseClass.course_id)
        .where(
            CourseClass.instructor_name == instructor.name,
            CourseClass.status != "cancelled",
            CourseClass.grading_complete.is_(False),
        )
        .order_by(Course.code, CourseClass.class_code)
    ).all()
    out = []
    for cls, course in rows:
        roster = class_roster(db, cls.id)
        out.append(
            {
                "code": course.code,
                "name": course.name,
                "classId": cls.class_code,
                "schedule": cls.schedule,
                "capacity": cls.capacity,
                "status": cls.status,
                "enrolled": len(roster),
                "toGrade": [r.student_id for r in roster if r.status == "approved"],
            }
        )
    return out


def express_interest(db: Session, instructor: InstructorActor, course: Course) -> bool:
    exists = db.scalar(select(CourseInterest).where(CourseInterest.user_id == instructor.id, CourseInterest.course_id == course.id))
    if exists:
        return False
    db.add(CourseInterest(user_id=instructor.id, course_id=course.id))
    db.commit()
    logger.info("instructor %s interested in %s", instructor.name, course.code)
    return True


def withdraw_interest(db: Session, instructor: InstructorActor, course: Course) -> bool:
    row = db.scalar(select(CourseInterest).where(CourseInterest.user_id == instructor.id, CourseInterest.course_id == course.id))
    if not row:
        return False
    db.delete(row)
    db.commit()
    return True


_SCHEDULE_RE = re.compile(r"^\s*(?P<days>[A-Za-z/]+)\s+(?P<time>\S+)")


def parse_schedule(raw: Optional[str]) -> tuple[list[str], Optional[str]]:
    """Split ``"Mon/Wed 10:00-11:15"`` into (["Mon", "Wed"], "10:00-11:15")."""
    if not raw:
        return [], None
    m = _SCHEDULE_RE.match(raw)
    if not m:
        return [], None
    days = [d[:1].upper() + d[1:3].lower() for d in m.group("days").split("/") if d]
    return days, m.group("time")


def weekly_schedule(db: Session) -> dict[str, list[dict]]:
    rows = db.execute(
        select(CourseClass, Course)
        .join(Course, Course.id == CourseClass.course_id)
        .where(Course.status == "open", CourseClass.status != "cancelled")
        .order_by(Course.code, CourseClass.class_code)
    ).all()
    schedule: dict[str, list[dict]] = {}
    for cls, course in rows:
        days, time_range = parse_schedule(cls.schedule)
        for day in days:
            schedule.setdefault(day, []).append(
                {"time": time_range, "code": course.code, "courseName": course.name, "classId": cls.class_code, "instructor": cls.instructor_name}
            )
    order = {d: i for i, d in enumerate(DAY_ORDER)}
    for entries in schedule.values():
        entries.sort(key=lambda e: (e["time"] or "", e["code"]))
    return dict(sorted(schedule.items(), key=lambda kv: order.get(kv[0], len(order))))


def courses_by_codes(db: Session, codes: Iterable[str]) -> list[Course]:
    wanted = list(dict.fromkeys(codes))
    found = {c.code: c for c in db.scalars(select(Course).where(Course.code.in_(wanted))).all()}
    missing = [code for code in wanted if code not in found]
    if missing:
        raise NotFound(f"Unknown course codes: {', '.join(missing)}")
    return [found[code] for code in wanted]
