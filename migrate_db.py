#!/usr/bin/env python3
"""
migrate_db.py – copy a folio database into a freshly initialised schema.

    python migrate_db.py OLD.sqlite3 NEW.sqlite3

Tables are copied parent-first so foreign keys stay enforced. Only columns
that still exist in the current schema are carried over; tables missing from
the old file are skipped.
"""

import sqlite3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
PKG = ROOT / "folio"

OLD_DB = Path(sys.argv[1]) if len(sys.argv) > 1 else PKG / "folio.sqlite3.old"
NEW_DB = Path(sys.argv[2]) if len(sys.argv) > 2 else PKG / "folio.sqlite3"

# parents before children
TABLES_IN_ORDER = [
    "admin_user",
    "settings",
    "tag",
    "blog_series",
    "post",
    "project",
    "post_tag",
    "project_tag",
    "counter",
    "visitor_session",
    "page_visit",
    "chat_session",
    "chat_message",
]


def columns(db: sqlite3.Connection, table: str) -> list[str]:
    return [c["name"] for c in db.execute(f"PRAGMA table_info({table})")]


def main() -> None:
    if not OLD_DB.exists():
        sys.exit(f"❌  source DB not found: {OLD_DB}")
    if NEW_DB.exists():
        sys.exit(f"❌  {NEW_DB} already exists – remove it first")

    print("• old →", OLD_DB)
    print("• new →", NEW_DB)

    sys.path.insert(0, str(ROOT))
    from folio import blog

    blog.app.config["DATABASE"] = str(NEW_DB)
    with blog.app.app_context():
        blog.init_db()
    print("  schema created")

    new_db = sqlite3.connect(NEW_DB)
    new_db.row_factory = sqlite3.Row
    new_db.execute("PRAGMA foreign_keys = ON")

    old_db = sqlite3.connect(OLD_DB)
    old_db.row_factory = sqlite3.Row

    for tbl in TABLES_IN_ORDER:
        old_cols = columns(old_db, tbl)
        if not old_cols:
            print(f"  {tbl:<16} (absent)")
            continue
        cols = [c for c in columns(new_db, tbl) if c in old_cols]

        if tbl == "settings":
            new_db.execute("DELETE FROM settings")  # drop the seeded defaults

        col_list = ", ".join(cols)
        q_marks = ", ".join("?" * len(cols))
        rows = old_db.execute(f"SELECT {col_list} FROM {tbl}").fetchall()
        if rows:
            new_db.executemany(
                f"INSERT INTO {tbl} ({col_list}) VALUES ({q_marks})",
                [tuple(r) for r in rows],
            )
        print(f"  {tbl:<16} {len(rows):>6} rows")

    new_db.commit()
    old_db.close()
    new_db.close()
    print("\n✅  migration finished – new DB at", NEW_DB)


if __name__ == "__main__":
    main()
