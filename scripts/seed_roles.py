"""
Role Seeding Script

Writes every predefined role as a platform-wide RolePermission row so the
role table can be inspected and extended from the database.
Run from project root: python scripts/seed_roles.py

Version: 1.0.0
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import select

from stallfront.core.permissions import PREDEFINED_ROLES
from stallfront.database import async_session_maker, dispose_db, init_db
from stallfront.models import RolePermission


async def seed_roles() -> int:
    await init_db()
    written = 0

    async with async_session_maker() as db:
        for role_name, permissions in PREDEFINED_ROLES.items():
            result = await db.execute(
                select(RolePermission).where(
                    RolePermission.role_name == role_name,
                    RolePermission.business_id.is_(None),
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = RolePermission(role_name=role_name, business_id=None)
                db.add(row)
            row.permissions_csv = ",".join(sorted(permissions))
            written += 1
            print(f"   ✅ {role_name}: {len(permissions)} permissions")
        await db.commit()

    await dispose_db()
    return written


if __name__ == "__main__":
    print("=" * 60)
    print("🔐 SEEDING PREDEFINED ROLES")
    print("=" * 60)
    count = asyncio.run(seed_roles())
    print(f"\n✅ {count} roles written")
