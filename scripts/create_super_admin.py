"""
Super Admin Bootstrap Script

Creates the platform super admin, or resets the password and roles of an
existing account with the same email.
Run from project root: python scripts/create_super_admin.py --email admin@example.com --name "Ops"

Version: 1.0.0
"""

import argparse
import asyncio
import getpass
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import select

from stallfront.core.security import hash_password, validate_password_strength
from stallfront.database import async_session_maker, dispose_db, init_db
from stallfront.models import User, UserStatus


async def create_super_admin(email: str, name: str, password: str) -> bool:
    problems = validate_password_strength(password)
    if problems:
        print("❌ Password rejected:")
        for problem in problems:
            print(f"   - {problem}")
        return False

    await init_db()
    email = email.strip().lower()

    async with async_session_maker() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        created = user is None
        if created:
            user = User(email=email, name=name)
            db.add(user)

        user.hashed_password = hash_password(password)
        user.roles = sorted(set(user.roles) | {"super_admin"})
        user.status = UserStatus.ACTIVE.value
        user.password_change_required = False
        await db.commit()

    await dispose_db()
    print(f"✅ Super admin {'created' if created else 'updated'}: {email}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or reset the super admin")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Platform Admin")
    parser.add_argument("--password", help="Prompted for when omitted")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    ok = asyncio.run(create_super_admin(args.email, args.name, password))
    sys.exit(0 if ok else 1)
