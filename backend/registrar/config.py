import os


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("REGISTRAR_DATABASE_URL", "sqlite:///./registrar.db")
SESSION_SECRET = os.getenv("REGISTRAR_SESSION_SECRET", "change-me")
LOG_LEVEL = os.getenv("REGISTRAR_LOG_LEVEL", "INFO")

# Registrations a class needs before an admin may validate it.
MIN_STUDENTS_TO_VALIDATE = int(os.getenv("REGISTRAR_MIN_STUDENTS_TO_VALIDATE", "1"))

# Cancelling a class strips every user's completion for its course.
CANCEL_REVOKES_COMPLETIONS = _flag("REGISTRAR_CANCEL_REVOKES_COMPLETIONS", True)

SEED_PATH = os.getenv("REGISTRAR_SEED_PATH") or None

CORE_COURSES = tuple(
    code.strip() for code in os.getenv("REGISTRAR_CORE_COURSES", "CMPS151,CMPS251,CMPS350").split(",") if code.strip()
)

GRADES = ("A", "B", "C", "D", "F")
FAILING_GRADE = "F"
ROLES = ("student", "instructor", "admin")
COURSE_STATUSES = ("draft", "open", "validated", "cancelled")
CLASS_STATUSES = ("pending", "validated", "cancelled")
REGISTRATION_STATUSES = ("pending", "approved")
