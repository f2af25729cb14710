from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import config
from .db import Completion, Course, CourseClass, CourseInterest, CoursePrerequisite, Registration, User


def user_counts_by_role(db: Session) -> dict[str, int]:
    rows = db.execute(select(User.role, func.count(User.id)).group_by(User.role)).all()
    return {role: count for role, count in rows}


def students_per_course(db: Session) -> list[dict]:
    rows = db.execute(
        select(Course.code, Course.name, func.count(Registration.id))
        .outerjoin(CourseClass, CourseClass.course_id == Course.id)
        .outerjoin(Registration, Registration.class_id == CourseClass.id)
        .group_by(Course.id)
        .order_by(Course.code)
    ).all()
    return [{"code": code, "name": name, "students": count} for code, name, count in rows]


def instructor_class_counts(db: Session) -> list[dict]:
    rows = db.execute(
        select(User.name, User.username, func.count(CourseClass.id))
        .outerjoin(CourseClass, CourseClass.instructor_name == User.name)
        .where(User.role == "instructor")
        .group_by(User.id)
        .order_by(User.name)
    ).all()
    return [{"name": name, "username": username, "classes": count} for name, username, count in rows]


def completion_rates(db: Session) -> list[dict]:
    registered = {row["code"]: row["students"] for row in students_per_course(db)}
    completed = dict(
        db.execute(select(Completion.course_code, func.count(Completion.id)).group_by(Completion.course_code)).all()
    )
    out = []
    for course in db.scalars(select(Course).order_by(Course.code)).all():
        reg = registered.get(course.code, 0)
        done = completed.get(course.code, 0)
        out.append(
            {
                "code": course.code,
                "name": course.name,
                "completed": done,
                "registered": reg,
                "completionRate": round(done / reg, 4) if reg else 0.0,
            }
        )
    return out


def most_completed_courses(db: Session, limit: int = 5) -> list[dict]:
    counts = func.count(Completion.id)
    rows = db.execute(
        select(Course.code, Course.name, counts)
        .outerjoin(Completion, Completion.course_code == Course.code)
        .group_by(Course.id)
        .order_by(counts.desc(), Course.code)
        .limit(limit)
    ).all()
    return [{"code": code, "name": name, "completions": count} for code, name, count in rows]


def total_active_classes(db: Session) -> int:
    return db.scalar(select(func.count(CourseClass.id)).where(CourseClass.status != "cancelled")) or 0


def course_counts_by_status(db: Session) -> dict[str, int]:
    rows = db.execute(select(Course.status, func.count(Course.id)).group_by(Course.status)).all()
    return {status: count for status, count in rows}


def interest_per_course(db: Session) -> list[dict]:
    rows = db.execute(
        select(Course.code, Course.name, func.count(CourseInterest.id))
        .outerjoin(CourseInterest, CourseInterest.course_id == Course.id)
        .group_by(Course.id)
        .order_by(Course.code)
    ).all()
    return [{"code": code, "name": name, "interests": count} for code, name, count in rows]


def average_prerequisite_count(db: Session) -> float:
    courses = db.scalar(select(func.count(Course.id))) or 0
    if not courses:
        return 0.0
    prereqs = db.scalar(select(func.count(CoursePrerequisite.id))) or 0
    return round(prereqs / courses, 2)


def students_completed_core(db: Session, core: Optional[Iterable[str]] = None) -> list[dict]:
    core_codes = set(config.CORE_COURSES if core is None else core)
    out = []
    for student in db.scalars(select(User).where(User.role == "student").order_by(User.name)).all():
        done = set(db.scalars(select(Completion.course_code).where(Completion.user_id == student.id)).all())
        if core_codes <= done:
            out.append({"id": student.id, "name": student.name, "username": student.username})
    return out


def dashboard(db: Session, most_completed_limit: int = 5) -> dict:
    return {
        "userCountsByRole": user_counts_by_role(db),
        "studentsPerCourse": students_per_course(db),
        "instructorClassCounts": instructor_class_counts(db),
        "completionRates": completion_rates(db),
        "mostCompletedCourses": most_completed_courses(db, most_completed_limit),
        "totalActiveClasses": total_active_classes(db),
        "courseCountsByStatus": course_counts_by_status(db),
        "interestPerCourse": interest_per_course(db),
        "averagePrerequisiteCount": average_prerequisite_count(db),
        "studentsCompletedCore": students_completed_core(db),
    }
