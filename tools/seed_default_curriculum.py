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
from curriculum_flow.models import CourseRow, User  # noqa: E402
from curriculum_flow.persistence import PersistenceAdapter  # noqa: E402
from curriculum_flow.transfer import load_default_document  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(description="Seed the DB with the curriculum shipped in the package.")
    p.add_argument("--user", default="staff_admin", help="Username recorded in the audit log")
    p.add_argument("--force", action="store_true", help="Replace the catalog even if courses already exist")
    p.add_argument("--apply", action="store_true", help="Actually write to DB (default is dry-run)")
    return p.parse_args()


def main():
    args = parse_args()
    configure_logging()
    document = load_default_document()
    print(f"Default curriculum: {len(document.courses)} courses, {len(document.prerequisites)} prerequisites")

    init_db(engine, SessionLocal)
    with SessionLocal() as db:
        existing = len(db.scalars(select(CourseRow.id)).all())
        user = db.scalar(select(User).where(User.username == args.user))
        if not user:
            raise SystemExit(f"User not found: {args.user}")
        subject = Subject(session_id="tools", user_id=user.id, username=user.username)
    print(f"Courses already in DB: {existing}")
    if existing and not args.force:
        print("Catalog is not empty. Use --force to replace it.")
        return

    if not args.apply:
        print("Dry-run only. Use --apply to write.")
        return

    adapter = PersistenceAdapter(SessionLocal, DurableCache(CACHE_PATH), SessionStore())
    summary = adapter.import_document(subject, document, replace_existing=True)
    print(f"Seeded: {summary}")


if __name__ == "__main__":
    main()
