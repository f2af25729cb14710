from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import catalog, config, enrollment, seed, stats
from .db import AuditLog, Base, SessionLocal, User, engine, get_db, serialize
from .enrollment import ClassLockRegistry
from .errors import RegistrarError
from .roles import Actor, actor_for, require_admin, require_instructor, require_student
from .security import issue_token, read_token, verify_password

logger = logging.getLogger(__name__)

app = FastAPI(title="University Course Registration")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.state.class_locks = ClassLockRegistry()


class LoginIn(BaseModel):
    username: str
    password: str


class ClassIn(BaseModel):
    classId: str
    instructor: Optional[str] = None
    schedule: Optional[str] = None
    capacity: int = Field(gt=0)


class CourseIn(BaseModel):
    code: str
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    prerequisites: list[str] = []
    status: str = "draft"
    classes: list[ClassIn] = []


class CourseStatusIn(BaseModel):
    status: str


class PublishIn(BaseModel):
    codes: list[str] = Field(min_length=1)


class GradeIn(BaseModel):
    grade: str


class SeedIn(BaseModel):
    users: list[dict] = []
    courses: list[dict] = []


@dataclass
class RequestContext:
    db: Session
    user: User
    actor: Actor
    locks: ClassLockRegistry


def configure_logging() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def current_user(session_token: str = Query(...), db: Session = Depends(get_db)) -> User:
    user_id = read_token(session_token)
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def get_context(request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)) -> RequestContext:
    return RequestContext(db=db, user=user, actor=actor_for(user), locks=request.app.state.class_locks)


def write_audit(db: Session, actor: Actor, action: str, entity: str, entity_id: str, payload: Optional[dict] = None) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor.id,
            action=action,
            entity_type=entity,
            entity_id=entity_id,
            payload=json.dumps(payload, default=str) if payload is not None else None,
        )
    )
    db.commit()


@app.exception_handler(RegistrarError)
async def registrar_error(request: Request, exc: RegistrarError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def startup():
    configure_logging()
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        seed.ensure_admin(db)
        if config.SEED_PATH:
            seed.seed_catalog(db, seed.load_seed_file(config.SEED_PATH))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.username == payload.username.strip()))
    if not user or not verify_password(payload.password, user.password):
        logger.warning("failed login for %s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"session_token": issue_token(user.id), "role": user.role, "name": user.name}


@app.get("/me")
def me(ctx: RequestContext = Depends(get_context)):
    return catalog.user_payload(ctx.db, ctx.user)


@app.get("/courses")
def list_courses(
    q: Optional[str] = None,
    category: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "code",
    mine: bool = False,
    ctx: RequestContext = Depends(get_context),
):
    instructor = require_instructor(ctx.actor) if mine else None
    return catalog.search_courses(ctx.db, q=q, category=category, status=status, instructor=instructor, sort_by=sort_by)


@app.get("/courses/{code}")
def get_course(code: str, ctx: RequestContext = Depends(get_context)):
    return catalog.course_payload(ctx.db, catalog.find_course(ctx.db, code))


@app.post("/courses/{code}/classes/{class_id}/registrations", status_code=201)
def register(code: str, class_id: str, ctx: RequestContext = Depends(get_context)):
    reg = enrollment.register(ctx.db, ctx.actor, ctx.locks, code, class_id)
    write_audit(ctx.db, ctx.actor, "REGISTER", "Registration", reg.id, {"course": code, "class": class_id})
    return catalog.registration_payload(reg)


@app.delete("/courses/{code}/classes/{class_id}/registrations")
def cancel_registration(code: str, class_id: str, ctx: RequestContext = Depends(get_context)):
    enrollment.cancel_registration(ctx.db, ctx.actor, ctx.locks, code, class_id)
    write_audit(ctx.db, ctx.actor, "CANCEL_REGISTRATION", "Class", class_id, {"course": code})
    return {"status": "cancelled"}


@app.post("/courses/{code}/classes/{class_id}/registrations/{student_id}/approve")
def approve_registration(code: str, class_id: str, student_id: str, ctx: RequestContext = Depends(get_context)):
    reg = enrollment.approve(ctx.db, ctx.actor, ctx.locks, code, class_id, student_id)
    write_audit(ctx.db, ctx.actor, "APPROVE", "Registration", reg.id, {"course": code, "class": class_id, "student": student_id})
    return catalog.registration_payload(reg)


@app.post("/courses/{code}/classes/{class_id}/registrations/{student_id}/grade")
def grade_registration(code: str, class_id: str, student_id: str, payload: GradeIn, ctx: RequestContext = Depends(get_context)):
    result = enrollment.grade(ctx.db, ctx.actor, ctx.locks, code, class_id, student_id, payload.grade)
    write_audit(ctx.db, ctx.actor, "GRADE", "Class", class_id, {"course": code, **result})
    return result


@app.get("/students/me/learning-path")
def my_learning_path(ctx: RequestContext = Depends(get_context)):
    return catalog.learning_path(ctx.db, require_student(ctx.actor))


@app.get("/instructors/me/classes")
def my_classes(ctx: RequestContext = Depends(get_context)):
    return catalog.instructor_classes(ctx.db, require_instructor(ctx.actor))


@app.post("/courses/{code}/interest")
def express_interest(code: str, ctx: RequestContext = Depends(get_context)):
    instructor = require_instructor(ctx.actor)
    course = catalog.find_course(ctx.db, code)
    created = catalog.express_interest(ctx.db, instructor, course)
    if created:
        write_audit(ctx.db, ctx.actor, "EXPRESS_INTEREST", "Course", course.id, {"course": code})
    return {"status": "interested", "created": created}


@app.delete("/courses/{code}/interest")
def withdraw_interest(code: str, ctx: RequestContext = Depends(get_context)):
    instructor = require_instructor(ctx.actor)
    course = catalog.find_course(ctx.db, code)
    if not catalog.withdraw_interest(ctx.db, instructor, course):
        raise HTTPException(status_code=404, detail="No interest recorded for this course")
    write_audit(ctx.db, ctx.actor, "WITHDRAW_INTEREST", "Course", course.id, {"course": code})
    return {"status": "deleted"}


@app.post("/admin/courses", status_code=201)
def create_course(payload: CourseIn, ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    course = catalog.create_course(ctx.db, payload.model_dump())
    write_audit(ctx.db, ctx.actor, "CREATE", "Course", course.id, payload.model_dump())
    return catalog.course_payload(ctx.db, course)


@app.post("/admin/courses/publish")
def publish_courses(payload: PublishIn, ctx: RequestContext = Depends(get_context)):
    courses = enrollment.publish_courses(ctx.db, ctx.actor, payload.codes)
    write_audit(ctx.db, ctx.actor, "PUBLISH", "Course", ",".join(c.code for c in courses))
    return [serialize(c) for c in courses]


@app.post("/admin/courses/{code}/classes", status_code=201)
def add_class(code: str, payload: ClassIn, ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    course = catalog.find_course(ctx.db, code)
    cls = catalog.add_class(ctx.db, course, payload.model_dump())
    write_audit(ctx.db, ctx.actor, "CREATE", "Class", cls.id, {"course": code, **payload.model_dump()})
    return catalog.class_payload(ctx.db, cls)


@app.post("/admin/courses/{code}/status")
def set_course_status(code: str, payload: CourseStatusIn, ctx: RequestContext = Depends(get_context)):
    course = enrollment.set_course_status(ctx.db, ctx.actor, code, payload.status)
    write_audit(ctx.db, ctx.actor, "SET_STATUS", "Course", course.id, {"status": payload.status})
    return serialize(course)


@app.post("/admin/courses/{code}/classes/{class_id}/validate")
def validate_class(code: str, class_id: str, ctx: RequestContext = Depends(get_context)):
    result = enrollment.validate_class(ctx.db, ctx.actor, ctx.locks, code, class_id)
    write_audit(ctx.db, ctx.actor, "VALIDATE", "Class", class_id, {"course": code, **result})
    return result


@app.post("/admin/courses/{code}/classes/{class_id}/cancel")
def cancel_class(code: str, class_id: str, ctx: RequestContext = Depends(get_context)):
    result = enrollment.cancel_class(ctx.db, ctx.actor, ctx.locks, code, class_id)
    write_audit(ctx.db, ctx.actor, "CANCEL", "Class", class_id, {"course": code, **result})
    return result


@app.get("/admin/schedule")
def weekly_schedule(ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    return catalog.weekly_schedule(ctx.db)


@app.get("/admin/stats")
def dashboard_stats(limit: int = Query(5, ge=1, le=100), ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    return stats.dashboard(ctx.db, most_completed_limit=limit)


@app.get("/admin/audit")
def audit_log(limit: int = Query(50, ge=1, le=500), ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    rows = ctx.db.scalars(select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)).all()
    return [serialize(r) for r in rows]


@app.post("/admin/seed")
def load_seed(payload: SeedIn, ctx: RequestContext = Depends(get_context)):
    require_admin(ctx.actor)
    summary = seed.seed_catalog(ctx.db, payload.model_dump())
    write_audit(ctx.db, ctx.actor, "SEED", "System", "seed", summary)
    return {"status": "ok", "summary": summary}
