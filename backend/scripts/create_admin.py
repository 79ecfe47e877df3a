"""Create an admin user, or promote an existing one by email."""
import argparse
import asyncio
import sys

from digipay.domain.users.services import UserService
from digipay.infra.db.base import AsyncSessionLocal
from digipay.infra.db.repositories.user_repo import UserRepositoryImpl
from digipay.infra.security.password import get_password_hash


async def create_admin(email: str, password: str, display_name: str | None) -> None:
    async with AsyncSessionLocal() as session:
        repo = UserRepositoryImpl(session)
        users = UserService(repo, session)
        user = await users.get_user_by_email(email.strip().lower())
        if user:
            print(f"ℹ️ User {user.email} exists; promoting to admin")
        else:
            user = await users.create_user(email, get_password_hash(password), display_name=display_name)
            print(f"✅ Created user {user.email} ({user.id})")
        await repo.set_flags(user.id, is_admin=True)
        await session.commit()
        print(f"✅ {user.email} is an admin")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--display-name", default=None)
    args = parser.parse_args()
    if len(args.password) < 8:
        print("❌ Password must be at least 8 characters")
        sys.exit(1)
    asyncio.run(create_admin(args.email, args.password, args.display_name))
