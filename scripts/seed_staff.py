#!/usr/bin/env python3
"""
Load the staff directory from a YAML file.
Usage: python scripts/seed_staff.py staff.yaml

staff.yaml:
  staff:
    - {phone: "918755052568", name: Siddharth Singh, role: owner, email: owner@ironcore.fit}
    - {phone: "919812345678", name: Priya, role: trainer}
"""

import sys
from pathlib import Path

import yaml

from app.database import Base, SessionLocal, engine
from app.services.staff_service import add_staff


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/seed_staff.py <staff.yaml>")
        sys.exit(1)

    data = yaml.safe_load(Path(sys.argv[1]).read_text(encoding="utf-8")) or {}
    members = data.get("staff") or []
    if not members:
        print("No staff entries found", file=sys.stderr)
        sys.exit(1)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for member in members:
            result = add_staff(
                db,
                phone=str(member["phone"]),
                name=member["name"],
                email=member.get("email"),
                role=member.get("role", "staff"),
                receive_notifications=member.get("receive_notifications", True),
            )
            status = "ok" if result.ok else f"skipped ({result.error})"
            print(f"{member['name']}: {status}")
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    main()
