"""Create the first admin account, or promote an existing user.

Usage:
    python scripts/bootstrap_admin.py <username> <email> <game_id>
    (the password is read from ADMIN_PASSWORD or prompted for)
"""

import argparse
import asyncio
import getpass
import os

import tourneyhub.database as database
from sqlalchemy import func, or_, select
from tourneyhub.models.user import User
from tourneyhub.security import hash_password


async def main(username: str, email: str, game_id: str, password: str) -> None:
    await database.init_models()
    async with database.async_session() as session:
        user = await session.scalar(
            select(User).where(
                or_(func.lower(User.username) == username.lower(), func.lower(User.email) == email.lower())
            )
        )
        if user is None:
            user = User(
                username=username,
                email=email,
                game_id=game_id,
                password_hash=hash_password(password),
                role="admin",
            )
            session.add(user)
            action = "Created"
        else:
            user.role = "admin"
            action = "Promoted"
        await session.commit()
        print(f"{action} admin {user.username} (id {user.id}).")
    await database.engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an admin account")
    parser.add_argument("username")
    parser.add_argument("email")
    parser.add_argument("game_id")
    args = parser.parse_args()
    password = os.getenv("ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
    if len(password) < 8:
        raise SystemExit("Password must be at least 8 characters")
    asyncio.run(main(args.username, args.email, args.game_id, password))
