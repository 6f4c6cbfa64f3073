"""
Command-line entry point for inspecting tenants and availability.

Uses the configured tenant store and the live calendar provider.

Usage:
    List tenants:        python main.py tenants
    Bookable times:      python main.py slots <tenant_id> 2024-06-10
    Next bookable date:  python main.py next <tenant_id> 2024-06-10 --days 14
"""

import argparse
import asyncio
import logging
import sys

from tenantbook.config import settings
from tenantbook.errors import TenantBookError

logger = logging.getLogger(__name__)


def _build_store():
    from tenantbook.store import TenantStore, create_backend

    return TenantStore(create_backend(settings.store.backend, settings.store.path))


def _build_resolver(store):
    from tenantbook.gateway import LeadConnectorGateway
    from tenantbook.scheduling import AvailabilityResolver

    return AvailabilityResolver(store, LeadConnectorGateway(settings.gateway))


async def _list_tenants() -> int:
    store = _build_store()
    for tenant in await store.list():
        linked = "linked" if tenant.calendar_id and tenant.api_token else "not linked"
        sys.stdout.write(f"{tenant.id}\t{tenant.name}\t{linked}\n")
    return 0


async def _show_slots(tenant_id: str, date: str) -> int:
    resolver = _build_resolver(_build_store())
    times = await resolver.resolve(tenant_id, date)
    if not times:
        sys.stdout.write(f"No bookable times on {date}.\n")
    for value in times:
        sys.stdout.write(value + "\n")
    return 0


async def _show_next(tenant_id: str, date: str, days: int) -> int:
    resolver = _build_resolver(_build_store())
    found = await resolver.next_available(tenant_id, date, days)
    if found is None:
        sys.stdout.write(f"Nothing bookable within {days} day(s) of {date}.\n")
        return 0
    day, times = found
    sys.stdout.write(f"{day}: {', '.join(times)}\n")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Inspect tenants and bookable times.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("tenants", help="List all tenants.")

    slots = commands.add_parser("slots", help="Show bookable times for a date.")
    slots.add_argument("tenant_id")
    slots.add_argument("date", help="YYYY-MM-DD")

    nxt = commands.add_parser("next", help="Find the next date with bookable times.")
    nxt.add_argument("tenant_id")
    nxt.add_argument("date", help="YYYY-MM-DD to start from")
    nxt.add_argument("--days", type=int, default=settings.booking.horizon_days)

    args = parser.parse_args(argv)

    if args.command == "tenants":
        runner = _list_tenants()
    elif args.command == "slots":
        runner = _show_slots(args.tenant_id, args.date)
    else:
        runner = _show_next(args.tenant_id, args.date, args.days)

    try:
        return asyncio.run(runner)
    except TenantBookError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
