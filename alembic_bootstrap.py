#!/usr/bin/env python3
"""Alembic bootstrap for databases created with Base.metadata.create_all().

If the order tables already exist but alembic_version is missing, stamp
the baseline revision so `alembic upgrade head` only runs later revisions.
"""

from __future__ import annotations

import logging
import os
import subprocess

from sqlalchemy import inspect

from helpdesk.database import engine

logger = logging.getLogger("alembic_bootstrap")

BASELINE_REVISION = os.getenv("ALEMBIC_BASELINE_REVISION", "001")
CORE_TABLES = ("orders", "order_history", "order_routing_rules")


def needs_baseline_stamp(inspector) -> bool:
    has_alembic_version = inspector.has_table("alembic_version")
    has_core_schema = any(inspector.has_table(table) for table in CORE_TABLES)
    return has_core_schema and not has_alembic_version


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    if needs_baseline_stamp(inspect(engine)):
        logger.info("Existing schema without alembic_version, stamping baseline %s", BASELINE_REVISION)
        subprocess.run(["alembic", "stamp", BASELINE_REVISION], check=True)
    else:
        logger.info("Alembic bootstrap check: no baseline stamp required")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
