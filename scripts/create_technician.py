#!/usr/bin/env python3
"""
Register a technician in the dispatch directory.

Usage:
    python scripts/create_technician.py "Dana Reyes" dana@example.edu --specialization Plumbing
    python scripts/create_technician.py "Sam Ito" sam@example.edu --max-concurrent 3
"""
import argparse
import asyncio

from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table
from rich import box

from facility_dispatch.database import close_db, get_db_context, init_db
from facility_dispatch.errors import ValidationError
from facility_dispatch.schemas.technician import TechnicianCreate, TechnicianResponse
from facility_dispatch.services.technician_directory import technician_directory

console = Console()


async def create(data: TechnicianCreate, create_tables: bool) -> None:
    try:
        if create_tables:
            await init_db()
        async with get_db_context() as db:
            technician = await technician_directory.create_technician(
                db,
                name=data.name,
                email=data.email,
                specialization=data.specialization,
                max_concurrent=data.max_concurrent,
            )
            details = TechnicianResponse.model_validate(technician).model_dump(mode="json")
    finally:
        await close_db()

    table = Table(title="Technician created", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="bold")
    for key, value in details.items():
        table.add_row(key, str(value))
    console.print(table)


def main():
    parser = argparse.ArgumentParser(description="Register a technician")
    parser.add_argument("name")
    parser.add_argument("email")
    parser.add_argument(
        "--specialization",
        default="General",
        help="Electrical / Plumbing / IT / HVAC / General",
    )
    parser.add_argument("--max-concurrent", type=int, default=2)
    parser.add_argument("--create-tables", action="store_true", help="Run create_all first")
    args = parser.parse_args()

    try:
        data = TechnicianCreate(
            name=args.name,
            email=args.email,
            specialization=args.specialization,
            max_concurrent=args.max_concurrent,
        )
    except PydanticValidationError as e:
        console.print(f"[red]Invalid technician:[/red] {e}")
        raise SystemExit(2)

    try:
        asyncio.run(create(data, args.create_tables))
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
