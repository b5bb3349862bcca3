"""
Create (or promote) the first admin account.

At least one active admin must always exist; the API cannot create one
because public registration refuses the admin role. Run once per environment:

    ADMIN_EMAIL=... ADMIN_PASSWORD=... python scripts/bootstrap_admin.py
    python scripts/bootstrap_admin.py --email admin@school.example --password '...' --name 'Principal'
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys


# Allow `import portal.*` from backend/
REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


from portal.core.database import SessionLocal  # noqa: E402
from portal.core.password_policy import evaluate_password  # noqa: E402
from portal.core.roles import Role  # noqa: E402
from portal.core.security import hash_password  # noqa: E402
from portal.services.users import create_user, find_user_by_email, update_user  # noqa: E402


def bootstrap_admin(db, *, email: str, password: str, name: str) -> str:
    """Returns 'created', 'promoted' or 'already_admin'."""
    user = find_user_by_email(db, email)
    if user is None:
        create_user(db, email=email, name=name, password_hash=hash_password(password), role=Role.ADMIN)
        return "created"

    if user.role == Role.ADMIN.value and not user.suspended:
        return "already_admin"

    update_user(db, user, role=Role.ADMIN, suspended=False)
    return "promoted"


def main() -> int:
    parser = argparse.ArgumentParser(description="Create or promote the first portal admin.")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", ""))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD", ""))
    parser.add_argument("--name", default=os.getenv("ADMIN_NAME", "Administrator"))
    args = parser.parse_args()

    if not args.email or not args.password:
        print("Both --email and --password (or ADMIN_EMAIL / ADMIN_PASSWORD) are required.")
        return 2

    violations = evaluate_password(args.password, email=args.email)
    if violations:
        print(f"Password rejected: {', '.join(violations)}")
        return 2

    with SessionLocal() as db:
        status = bootstrap_admin(db, email=args.email, password=args.password, name=args.name)

    print(f"{args.email.strip().lower()}: {status}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
