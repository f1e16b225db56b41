import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from sqlalchemy import select  # noqa: E402

from curriculum_flow.auth import Subject  # noqa: E402
from curriculum_flow.cache import DurableCache, SessionStore  # noqa: E402
from curriculum_flow.config import CACHE_PATH, configure_logging  # noqa: E402
from curriculum_flow.database import SessionLocal, engine, init_db  # noqa: E402
from curriculum_flow.models import User  # noqa: E402
from curriculum_flow.persistence import PersistenceAdapter  # noqa: E402
from curriculum_flow.transfer import parse_document  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(description="Load a curriculum JSON document ({courses, prerequisites}) into the DB.")
    p.add_argument("file", help="Path to the curriculum JSON document")
    p.add_argument("--user", default="staff_admin", help="Username recorded in the audit log")
    p.add_argument("--merge", action="store_true", help="Keep courses that are not in the document; existing ids are skipped")
    p.add_argument("--apply", action="store_true", help="Actually write to DB (default is dry-run)")
    return p.parse_args()


def main():
    args = parse_args()
    configure_logging()
    path = Path(args.file).resolve()
    if not path.exists():
        raise SystemExit(f"File not found: {path}")
    document = parse_document(path.read_text(encoding="utf-8"))
    known = {c.id for c in document.courses}
    dangling = [p for p in document.prerequisites if p.from_id not in known or p.to_id not in known]
    print(f"File: {path.name}")
    print(f"Courses: {len(document.courses)}  Prerequisites: {len(document.prerequisites)}  Dangling edges: {len(dangling)}")
    for p in dangling[:20]:
        print(f"- {p.from_id} -> {p.to_id}")

    if not args.apply:
        print("Dry-run only. Use --apply to write.")
        return

    init_db(engine, SessionLocal)
    with SessionLocal() as db:
        user = db.scalar(select(User).where(User.username == args.user))
        if not user:
            raise SystemExit(f"User not found: {args.user}")
        subject = Subject(session_id="tools", user_id=user.id, username=user.username)
    adapter = PersistenceAdapter(SessionLocal, DurableCache(CACHE_PATH), SessionStore())
    summary = adapter.import_document(subject, document, replace_existing=not args.merge)
    print(f"Imported: {summary}")


if __name__ == "__main__":
    main()
