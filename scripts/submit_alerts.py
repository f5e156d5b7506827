#!/usr/bin/env python3
"""
Submit predicted-failure alerts to a running dispatch API.

Usage:
    python scripts/submit_alerts.py                      # built-in sample batch
    python scripts/submit_alerts.py --file alerts.json   # list of alert objects
    python scripts/submit_alerts.py --sweep              # then trigger the escalation sweep
"""
import argparse
import asyncio
import json
import os
from pathlib import Path

import httpx
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

API_BASE_URL = os.environ.get("DISPATCH_API_URL", "http://localhost:8000/api/v1")
API_KEY = os.environ.get("DISPATCH_API_KEY", "dev-test-key")

SAMPLE_ALERTS = [
    {"location": "Block A", "category": "water", "days_to_failure": 5, "confidence": 90, "model_r2": 0.85},
    {"location": "Block A", "category": "water", "days_to_failure": 4, "confidence": 92, "model_r2": 0.88},
    {"location": "Library", "category": "electrical", "days_to_failure": 12, "confidence": 84},
    {"location": "Hostel 3", "category": "hostel", "days_to_failure": 25, "confidence": 95},
    {"location": "Lab 2", "category": "it", "days_to_failure": 3, "confidence": 79},
]


async def submit_one(client: httpx.AsyncClient, alert: dict) -> dict:
    response = await client.post("/alerts", json=alert)
    response.raise_for_status()
    body = response.json()
    if response.status_code == 201:
        return {"accepted": True, "outcome": "accepted", **body}
    return body


async def run(alerts: list[dict], sweep: bool) -> None:
    async with httpx.AsyncClient(
        base_url=API_BASE_URL,
        headers={"X-API-Key": API_KEY},
        timeout=30.0,
    ) as client:
        results = [await submit_one(client, alert) for alert in alerts]
        display_results(alerts, results)

        if sweep:
            response = await client.post("/escalation/check")
            response.raise_for_status()
            console.print(Panel.fit(response.json()["message"], title="Escalation sweep", border_style="yellow"))


def display_results(alerts: list[dict], results: list[dict]) -> None:
    table = Table(title="Alert submissions", box=box.ROUNDED, header_style="bold magenta")
    table.add_column("Location", style="cyan")
    table.add_column("Category")
    table.add_column("Outcome", justify="center")
    table.add_column("Technician", no_wrap=True)
    table.add_column("SLA deadline / reason")

    for alert, result in zip(alerts, results):
        if result.get("accepted"):
            outcome = "[green]accepted[/green]"
            detail = result["sla_deadline"]
        else:
            outcome = f"[yellow]{result['outcome']}[/yellow]"
            detail = result.get("reason") or ""
        table.add_row(
            alert["location"],
            alert["category"],
            outcome,
            result.get("technician_id") or "-",
            detail,
        )

    console.print(table)


def main():
    parser = argparse.ArgumentParser(description="Submit alerts to the dispatch API")
    parser.add_argument("--file", type=Path, help="JSON file with a list of alerts")
    parser.add_argument("--sweep", action="store_true", help="Run the escalation sweep afterwards")
    args = parser.parse_args()

    alerts = json.loads(args.file.read_text()) if args.file else SAMPLE_ALERTS

    try:
        asyncio.run(run(alerts, args.sweep))
    except httpx.HTTPStatusError as e:
        console.print(f"[red]API error {e.response.status_code}:[/red] {e.response.text}")
        raise SystemExit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach {API_BASE_URL}:[/red] {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
