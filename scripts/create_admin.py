#!/usr/bin/env python3
"""
Create a dispatch user. Admins receive every SLA escalation.

Usage:
    python scripts/create_admin.py "Facilities Desk" desk@example.edu
    python scripts/create_admin.py "Jo Park" jo@example.edu --role reporter
"""
import argparse
import asyncio

from rich.console import Console
from sqlalchemy import select

from facility_dispatch.database import close_db, get_db_context, init_db
from facility_dispatch.models.user import User, UserRole

console = Console()


async def create(name: str, email: str, role: UserRole, create_tables: bool) -> bool:
    try:
        if create_tables:
            await init_db()
        async with get_db_context() as db:
            existing = await db.execute(select(User).where(User.email == email))
            if existing.scalar_one_or_none() is not None:
                console.print(f"[yellow]User {email} already exists[/yellow]")
                return False

            user = User(name=name, email=email, role=role)
            db.add(user)
            await db.flush()
            console.print(
                f"[green]Created {role.value}[/green] [bold]{name}[/bold] "
                f"<{email}> id=[cyan]{user.id}[/cyan]"
            )
            return True
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Create a dispatch user")
    parser.add_argument("name")
    parser.add_argument("email")
    parser.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        default=UserRole.ADMIN.value,
    )
    parser.add_argument("--create-tables", action="store_true", help="Run create_all first")
    args = parser.parse_args()

    created = asyncio.run(create(args.name, args.email, UserRole(args.role), args.create_tables))
    if not created:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
