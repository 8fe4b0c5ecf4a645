#!/usr/bin/env python3
"""
EdgeLog Shipper Status CLI Tool
Shows the persisted state of log actors: pending records, backoff window
and next wakeup
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List

from dotenv import load_dotenv
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from edgelog.actor import KEY_BACKOFF_MS, KEY_BACKOFF_UNTIL, KEY_PENDING
from edgelog.backoff import now_ms
from edgelog.host import DEFAULT_ACTOR_NAME, open_backend
from edgelog.storage import StorageBackend

load_dotenv()

# Rich console for pretty output
console = Console()


async def read_actor_status(backend: StorageBackend, name: str) -> Dict[str, Any]:
    """Collect the stored state of one actor"""
    storage = backend.storage_for(name)
    pending = await storage.get(KEY_PENDING)
    return {
        "actor": name,
        "pending": pending if isinstance(pending, list) else [],
        "backoff_ms": await storage.get(KEY_BACKOFF_MS) or 0,
        "backoff_until": await storage.get(KEY_BACKOFF_UNTIL) or 0,
        "alarm": await storage.get_alarm(),
    }


def format_deadline(at_ms: int | None, now: int) -> str:
    """Render an epoch-ms deadline relative to now"""
    if not at_ms:
        return "None"
    when = datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")
    delta = (at_ms - now) / 1000
    if delta >= 0:
        return f"{when} (in {delta:.1f}s)"
    return f"{when} ({-delta:.1f}s overdue)"


def display_status_table(statuses: List[Dict[str, Any]], now: int):
    """Display actor state in a table"""
    table = Table(title="EdgeLog Actors", show_header=True)
    table.add_column("Actor", style="cyan")
    table.add_column("Pending", style="green", justify="right")
    table.add_column("Backoff", style="yellow")
    table.add_column("Backoff Until", style="magenta")
    table.add_column("Next Wakeup", style="white")

    for status in statuses:
        backoff = f"[red]{status['backoff_ms']}ms[/red]" if status["backoff_ms"] else "[green]none[/green]"
        table.add_row(
            status["actor"],
            str(len(status["pending"])),
            backoff,
            format_deadline(status["backoff_until"], now),
            format_deadline(status["alarm"], now),
        )

    console.print(table)


def display_records(status: Dict[str, Any], limit: int):
    """Show the oldest pending records of an actor"""
    records = status["pending"][:limit]
    if not records:
        console.print(f"[dim]{status['actor']}: no pending records[/dim]")
        return
    console.print(Panel(
        JSON(json.dumps(records, default=str)),
        title=f"{status['actor']}: oldest {len(records)} of {len(status['pending'])} pending",
        border_style="blue",
    ))


async def main():
    parser = argparse.ArgumentParser(description="Inspect EdgeLog actor state")
    parser.add_argument("actors", nargs="*",
                       help="Actor names (default: global plus every actor with an alarm)")
    parser.add_argument("--storage", choices=["memory", "file", "postgres"],
                       help="Storage backend (default: EDGELOG_STORAGE)")
    parser.add_argument("--records", "-r", type=int, default=0,
                       help="Show the oldest N pending records")
    parser.add_argument("--json", action="store_true",
                       help="Output in JSON format")

    args = parser.parse_args()

    backend = None
    try:
        backend = await open_backend(args.storage)

        names = list(args.actors)
        if not names:
            names = [DEFAULT_ACTOR_NAME]
            names += [n for n in sorted(await backend.pending_alarms()) if n not in names]

        statuses = [await read_actor_status(backend, name) for name in names]

        if args.json:
            print(json.dumps(statuses, default=str, indent=2))
            return

        display_status_table(statuses, now_ms())
        if args.records:
            for status in statuses:
                display_records(status, args.records)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    finally:
        if backend is not None:
            await backend.close()


if __name__ == "__main__":
    asyncio.run(main())
