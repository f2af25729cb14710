"""Load users and courses from the JSON layout of the catalog data files.

Accepted registration shapes inside ``registeredStudents`` are a plain student
id (treated as pending) or ``{"studentId", "status", "grade"}``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import config
from .catalog import split_codes
from .db import Completion, Course, CourseClass, CourseInterest, CoursePrerequisite, Registration, User
from .security import hash_password

logger = logging.getLogger(__name__)


def load_seed_file(path) -> dict:
    """Read a combined ``{"users": [...], "courses": [...]}`` file, or a
    directory holding ``users.json`` and ``courses.json``."""
    path = Path(path)
    if path.is_dir():
        users = json.loads((path / "users.json").read_text(encoding="utf-8"))
        courses = json.loads((path / "courses.json").read_text(encoding="utf-8"))
        return {
            "users": users.get("users", []) if isinstance(users, dict) else users,
            "courses": courses.get("courses", []) if isinstance(courses, dict) else courses,
        }
    data = json.loads(path.read_text(encoding="utf-8"))
    return {"users": data.get("users", []), "courses": data.get("courses", [])}


def normalize_registration(raw) -> Optional[dict]:
    if isinstance(raw, (str, int)):
        return {"studentId": str(raw), "status": "pending", "grade": None}
    if isinstance(raw, dict) and raw.get("studentId"):
        status = raw.get("status") if raw.get("status") in config.REGISTRATION_STATUSES else "pending"
        grade = str(raw.get("grade") or "").upper()
        return {"studentId": str(raw["studentId"]), "status": status, "grade": grade if grade in config.GRADES else None}
    return None


def _seed_user(db: Session, data: dict, created: dict) -> None:
    username = str(data.get("username") or "").strip()
    role = data.get("role") or "student"
    if not username or role not in config.ROLES:
        created["skipped"] += 1
        return
    if db.scalar(select(User.id).where(User.username == username)):
        return
    if data.get("id") and db.get(User, str(data["id"])):
        logger.warning("user id %s is already taken, skipping %s", data["id"], username)
        created["skipped"] += 1
        return
    user = User(
        username=username,
        password=hash_password(str(data.get("password") or "")),
        name=data.get("name") or username,
        role=role,
        expertise=",".join(split_codes(data.get("expertise"))) or None,
    )
    if data.get("id"):
        user.id = str(data["id"])
    db.add(user)
    db.flush()
    created["users"] += 1
    # A repeated code keeps its first position and its last passing grade.
    passed: dict[str, dict] = {}
    for item in data.get("completedCourses") or []:
        grade = str(item.get("grade") or "").upper()
        if not item.get("code") or grade not in config.GRADES or grade == config.FAILING_GRADE:
            continue
        passed[str(item["code"])] = {**item, "grade": grade}
    for position, (code, item) in enumerate(passed.items()):
        db.add(
            Completion(
                user_id=user.id,
                course_code=code,
                course_name=item.get("name"),
                description=item.get("description"),
                grade=item["grade"],
                position=position,
            )
        )
        created["completions"] += 1


def _seed_course(db: Session, data: dict, created: dict) -> None:
    code = str(data.get("code") or "").strip()
    if not code or not data.get("name"):
        created["skipped"] += 1
        return
    if db.scalar(select(Course.id).where(Course.code == code)):
        return
    status = data.get("status") if data.get("status") in config.COURSE_STATUSES else "draft"
    course = Course(code=code, name=data["name"], category=data.get("category"), description=data.get("description"), status=status)
    db.add(course)
    db.flush()
    created["courses"] += 1
    for required in dict.fromkeys(split_codes(data.get("prerequisites"))):
        if required != code:
            db.add(CoursePrerequisite(course_id=course.id, required_code=required))

    class_codes: set[str] = set()
    for position, cls_data in enumerate(data.get("classes") or []):
        capacity = cls_data.get("capacity")
        if not cls_data.get("classId") or not isinstance(capacity, int) or capacity <= 0:
            created["skipped"] += 1
            continue
        if str(cls_data["classId"]) in class_codes:
            logger.warning("duplicate class %s/%s in seed data", code, cls_data["classId"])
            created["skipped"] += 1
            continue
        class_codes.add(str(cls_data["classId"]))
        cls = CourseClass(
            course_id=course.id,
            class_code=str(cls_data["classId"]),
            instructor_name=cls_data.get("instructor"),
            schedule=cls_data.get("schedule"),
            capacity=capacity,
            status=cls_data.get("status") if cls_data.get("status") in config.CLASS_STATUSES else "pending",
            grading_complete=bool(cls_data.get("gradingComplete", False)),
            position=position,
        )
        db.add(cls)
        db.flush()
        created["classes"] += 1
        seen: set[str] = set()
        for raw in cls_data.get("registeredStudents") or []:
            reg = normalize_registration(raw)
            if reg is None or reg["studentId"] in seen:
                continue
            if len(seen) >= capacity:
                logger.warning("class %s/%s is over capacity in seed data, dropping %s", code, cls.class_code, reg["studentId"])
                continue
            if not db.get(User, reg["studentId"]):
                logger.warning("unknown student %s in %s/%s", reg["studentId"], code, cls.class_code)
                continue
            seen.add(reg["studentId"])
            db.add(Registration(class_id=cls.id, student_id=reg["studentId"], status=reg["status"], grade=reg["grade"]))
            created["registrations"] += 1

    for instructor_name in dict.fromkeys(data.get("interestedInstructors") or []):
        instructor = db.scalar(select(User).where(User.name == instructor_name, User.role == "instructor"))
        if instructor:
            db.add(CourseInterest(user_id=instructor.id, course_id=course.id))
            created["interests"] += 1


def seed_catalog(db: Session, payload: dict) -> dict:
    created = {"users": 0, "completions": 0, "courses": 0, "classes": 0, "registrations": 0, "interests": 0, "skipped": 0}
    for user in payload.get("users") or []:
        _seed_user(db, user, created)
    for course in payload.get("courses") or []:
        _seed_course(db, course, created)
    db.commit()
    logger.info("seeded %s", ", ".join(f"{k}={v}" for k, v in created.items()))
    return created


def ensure_admin(db: Session) -> None:
    if db.scalar(select(User.id).where(User.role == "admin")):
        return
    db.add(User(username="admin", password=hash_password("admin"), name="Administrator", role="admin"))
    db.commit()
    logger.info("created default admin account")
