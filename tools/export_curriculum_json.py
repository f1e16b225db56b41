from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
OUT_PATH = ROOT / "docs" / "curriculum_export.json"
BACKEND_PATH = ROOT / "backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

from curriculum_flow.cache import DurableCache, SessionStore
from curriculum_flow.completion import CompletionEngine
from curriculum_flow.database import SessionLocal
from curriculum_flow.persistence import PersistenceAdapter
from curriculum_flow.transfer import export_document


def main() -> None:
    out_path = Path(sys.argv[1]) if len(sys.argv) > 1 else OUT_PATH
    adapter = PersistenceAdapter(SessionLocal, DurableCache(None), SessionStore())
    data = adapter.fetch_catalog()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(export_document(data), encoding="utf-8")
    print(
        {
            **CompletionEngine(data).summary(),
            "path": str(out_path),
        }
    )


if __name__ == "__main__":
    main()
