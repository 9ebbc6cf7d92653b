#!/usr/bin/env python
"""Recompute supervisor capacity from approved applications and co-supervisions.

Run after a data repair, a manual database edit, or whenever an admin
suspects ``current_capacity`` has drifted from the applications it backs.
Each supervisor is reconciled in its own transaction, so the script is
safe to run while the portal is serving requests.

Usage::

    python scripts/reconcile_capacity.py
    python scripts/reconcile_capacity.py --supervisor-id 0b6f...

Environment variables (via .env or shell)::

    DATABASE_URL   Async database DSN.
    SECRET_KEY     Required by application settings.

Exit codes:
    0: Success (whether or not anything changed).
    1: Invalid arguments or database error.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid
from typing import Optional

# Ensure the src layout is on sys.path when running as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)

# Maintenance runs act as a synthetic admin; audit logs show this uid.
_MAINTENANCE_UID = uuid.UUID(int=0)


async def _reconcile(supervisor_id: Optional[uuid.UUID]) -> int:
    """Run reconciliation and print a summary.

    Returns:
        Process exit code.
    """
    from capstone_portal.config.settings import get_settings  # noqa: PLC0415
    from capstone_portal.core.capacity_ledger import CapacityService  # noqa: PLC0415
    from capstone_portal.core.database import AsyncSessionLocal, async_engine  # noqa: PLC0415
    from capstone_portal.core.identity import Caller  # noqa: PLC0415
    from capstone_portal.core.logging_config import configure_logging  # noqa: PLC0415
    from capstone_portal.core.models.enums import Role  # noqa: PLC0415

    settings = get_settings()
    configure_logging(settings.log_level)

    service = CapacityService(
        AsyncSessionLocal,
        max_supervisor_capacity=settings.max_supervisor_capacity,
    )
    caller = Caller(uid=_MAINTENANCE_UID, role=Role.ADMIN, email_verified=True)
    try:
        result = await service.reconcile(caller=caller, supervisor_id=supervisor_id)
    finally:
        await async_engine.dispose()

    if not result.success:
        print(f"[reconcile_capacity] ERROR: {result.error}", file=sys.stderr)
        return 1

    summary = result.data
    print(
        f"[reconcile_capacity] Checked {summary['checked']} supervisor(s), "
        f"updated {summary['updated']}."
    )
    for change in summary["changes"]:
        over = (
            "  (OVER CAPACITY)"
            if change["current_capacity"] > change["max_capacity"]
            else ""
        )
        print(
            f"  {change['supervisor_id']}: {change['previous_capacity']} -> "
            f"{change['current_capacity']} / max {change['max_capacity']}{over}"
        )
    return 0


def main() -> None:
    """Entry point for the reconciliation script."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--supervisor-id",
        type=uuid.UUID,
        default=None,
        help="Reconcile a single supervisor instead of all of them.",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(_reconcile(args.supervisor_id)))


if __name__ == "__main__":
    main()
