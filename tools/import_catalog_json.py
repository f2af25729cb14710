import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from registrar.db import Base, SessionLocal, engine  # noqa: E402
from registrar.seed import ensure_admin, load_seed_file, seed_catalog  # noqa: E402


DEFAULT_SOURCE = ROOT / "data" / "catalog.json"


def import_catalog(source: Path) -> dict:
    if not source.exists():
        raise SystemExit(f"Missing catalog source: {source}")
    Base.metadata.create_all(engine)
    db = SessionLocal()
    try:
        ensure_admin(db)
        return seed_catalog(db, load_seed_file(source))
    finally:
        db.close()


if __name__ == "__main__":
    src = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SOURCE
    if not src.is_absolute():
        src = Path.cwd() / src
    summary = import_catalog(src)
    print(f"Imported catalog from {src}")
    for key, value in summary.items():
        print(f"- {key}: {value}")
