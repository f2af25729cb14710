import importlib.util
import json
from pathlib import Path

from sqlalchemy import select

from registrar import catalog, seed
from registrar.db import User
from registrar.security import verify_password

ROOT = Path(__file__).resolve().parents[1]
SAMPLE = ROOT / "data" / "catalog.json"


def test_sample_catalog_loads(db) -> None:
    summary = seed.seed_catalog(db, seed.load_seed_file(SAMPLE))
    assert summary == {
        "users": 5,
        "completions": 1,
        "courses": 3,
        "classes": 3,
        "registrations": 1,
        "interests": 1,
        "skipped": 0,
    }
    ali = catalog.find_user(db, "S1001")
    assert verify_password("pass123", ali.password)
    assert ali.password != "pass123"
    assert [c.course_code for c in catalog.completions_of(db, "S1001")] == ["CMPS151"]

    course = catalog.course_payload(db, catalog.find_course(db, "CMPS151"))
    assert course["classes"][0]["registeredStudents"] == [{"studentId": "S1002", "status": "pending", "grade": None}]
    assert catalog.course_payload(db, catalog.find_course(db, "CMPS350"))["status"] == "draft"


def test_seeding_twice_adds_nothing(db) -> None:
    payload = seed.load_seed_file(SAMPLE)
    seed.seed_catalog(db, payload)
    again = seed.seed_catalog(db, payload)
    assert again["users"] == 0
    assert again["courses"] == 0


def test_directory_layout(db, tmp_path) -> None:
    (tmp_path / "users.json").write_text(
        json.dumps({"users": [{"id": "S1", "username": "s1", "password": "x", "role": "student"}]}), encoding="utf-8"
    )
    (tmp_path / "courses.json").write_text(json.dumps([{"code": "CS100", "name": "Intro"}]), encoding="utf-8")
    payload = seed.load_seed_file(tmp_path)
    assert [u["id"] for u in payload["users"]] == ["S1"]
    assert [c["code"] for c in payload["courses"]] == ["CS100"]


def test_bad_records_are_skipped_or_trimmed(db, caplog) -> None:
    payload = {
        "users": [
            {"username": "", "role": "student"},
            {"username": "x", "role": "janitor"},
            {
                "id": "S1",
                "username": "s1",
                "role": "student",
                "completedCourses": [{"code": "CS050", "grade": "F"}, {"code": "CS060", "grade": "Z"}, {"code": "CS070", "grade": "b"}, {"code": "CS070", "grade": "A"}],
            },
            {"id": "S2", "username": "s2", "role": "student"},
            {"id": "I1", "username": "dup", "name": "Dr. Dup", "role": "instructor"},
            {"id": "S1", "username": "someone-else", "role": "student"},
        ],
        "courses": [
            {"code": "CS100"},
            {
                "code": "CS200",
                "name": "Tight",
                "status": "bogus",
                "prerequisites": ["CS200", "CS100"],
                "classes": [
                    {"classId": "C1", "capacity": 1, "registeredStudents": ["S1", "S2", {"studentId": "S1"}]},
                    {"classId": "C2", "capacity": 2, "registeredStudents": [{"studentId": "ghost", "status": "approved"}]},
                    {"classId": "C3", "capacity": 0},
                    {"classId": "C1", "capacity": 3},
                ],
                "interestedInstructors": ["Nobody", "Dr. Dup", "Dr. Dup"],
            },
        ],
    }
    with caplog.at_level("WARNING", logger="registrar.seed"):
        summary = seed.seed_catalog(db, payload)

    assert summary["users"] == 3
    assert summary["completions"] == 1
    assert summary["courses"] == 1
    assert summary["classes"] == 2
    assert summary["registrations"] == 1
    assert summary["interests"] == 1
    assert summary["skipped"] == 6
    assert "over capacity" in caplog.text
    assert "ghost" in caplog.text

    course = catalog.course_payload(db, catalog.find_course(db, "CS200"))
    assert course["status"] == "draft"
    assert course["prerequisites"] == ["CS100"]
    assert course["classes"][0]["registeredStudents"] == [{"studentId": "S1", "status": "pending", "grade": None}]
    assert [(c.course_code, c.grade) for c in catalog.completions_of(db, "S1")] == [("CS070", "A")]
    assert [c["classId"] for c in course["classes"]] == ["C1", "C2"]
    assert course["classes"][0]["capacity"] == 1
    assert catalog.find_user(db, "S1").username == "s1"


def test_normalize_registration() -> None:
    assert seed.normalize_registration("S1") == {"studentId": "S1", "status": "pending", "grade": None}
    assert seed.normalize_registration(42)["studentId"] == "42"
    assert seed.normalize_registration({"studentId": "S1", "status": "approved"})["status"] == "approved"
    assert seed.normalize_registration({"studentId": "S1", "status": "weird"})["status"] == "pending"
    assert seed.normalize_registration({"studentId": "S1", "grade": "b"})["grade"] == "B"
    assert seed.normalize_registration({"studentId": "S1", "grade": "Q"})["grade"] is None
    assert seed.normalize_registration({"status": "approved"}) is None


def test_ensure_admin_creates_one_default_account(db) -> None:
    seed.ensure_admin(db)
    seed.ensure_admin(db)
    admins = db.scalars(select(User).where(User.role == "admin")).all()
    assert len(admins) == 1
    assert admins[0].username == "admin"
    assert verify_password("admin", admins[0].password)


def test_import_tool_loads_the_sample_catalog(db) -> None:
    module_spec = importlib.util.spec_from_file_location("import_catalog_json", ROOT / "tools" / "import_catalog_json.py")
    tool = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(tool)

    summary = tool.import_catalog(SAMPLE)
    assert summary["courses"] == 3
    db.expire_all()
    roles = sorted(u.role for u in db.scalars(select(User)).all())
    assert roles.count("admin") == 2
