from __future__ import annotations

import sys

from sqlalchemy import select

from localbiz.db.session import SessionLocal
from localbiz.models.enums import UserRole
from localbiz.models.users import UserAuth

ROLES = "|".join(r.value for r in UserRole)


def main() -> int:
    if len(sys.argv) != 3:
        print(f"Usage: python scripts/set_role.py <email> <role: {ROLES}>")
        return 2

    email, role = sys.argv[1].lower(), sys.argv[2]
    if role not in {r.value for r in UserRole}:
        print(f"Unknown role: {role}")
        return 2

    db = SessionLocal()
    try:
        user = db.scalar(select(UserAuth).where(UserAuth.email == email))
        if not user:
            print("User not found")
            return 1
        previous = user.role
        user.role = role
        db.commit()
        print(f"Role updated: {email} {previous} -> {role}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
