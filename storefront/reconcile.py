#!/usr/bin/env python3
"""
reconcile.py - clean up order headers whose line items were never written.

Checkout writes the header first and the items second. When the item write
fails and the immediate discard also fails, the header is left behind with no
items. This command finds such headers older than a grace period and deletes
them (or just lists them with --dry-run).
"""
import argparse
from datetime import timedelta
from typing import List

import structlog

from storefront.core.logging import configure_logging
from storefront.db.models import utcnow
from storefront.schemas import OrderRead
from storefront.services.orders import SqlOrderService

logger = structlog.get_logger(__name__)


def reconcile(orders: SqlOrderService, grace_minutes: int = 15, dry_run: bool = False) -> List[OrderRead]:
    cutoff = utcnow() - timedelta(minutes=grace_minutes)
    orphans = orders.list_incomplete_headers(older_than=cutoff)
    for order in orphans:
        if dry_run:
            logger.info("Would discard incomplete order", order_number=order.order_number)
            continue
        if orders.discard_order_header(order.id):
            logger.info("Discarded incomplete order", order_number=order.order_number)
    return orphans


def main(argv=None):
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--grace-minutes", type=int, default=15, help="Only touch headers older than this")
    ap.add_argument("--dry-run", action="store_true", help="List incomplete orders without deleting them")
    args = ap.parse_args(argv)

    configure_logging()
    from storefront.db.session import SessionLocal

    orphans = reconcile(SqlOrderService(SessionLocal), args.grace_minutes, args.dry_run)
    print(f"{len(orphans)} incomplete order(s) {'found' if args.dry_run else 'processed'}")


if __name__ == "__main__":
    main()
