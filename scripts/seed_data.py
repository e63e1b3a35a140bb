from __future__ import annotations

import argparse

from services.api.app.config import get_settings
from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.order_store import OrderStore
from services.api.app.services.catalog_mock import MockCatalogClient
from services.api.app.services.clock import local_day_start, utc_now
from services.api.app.services.pricing import PricedLine


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo users and orders for local dev")
    parser.add_argument("--user-1", default="u-1")
    parser.add_argument("--user-1-email", default="u1@example.com")
    parser.add_argument("--user-2", default="u-2")
    parser.add_argument("--user-2-email", default="u2@example.com")
    parser.add_argument(
        "--orders", type=int, default=2, help="Confirmed orders to create for user 1"
    )
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        store = OrderStore(db)
        for uid, email in ((args.user_1, args.user_1_email), (args.user_2, args.user_2_email)):
            store.ensure_user(uid, email)

        # Only seed history once.
        if not store.list_orders(args.user_1, limit=1):
            milk = MockCatalogClient().query("Jesa Milk (2L)")[0]
            line = PricedLine(
                catalog_item_id=milk.id, name=milk.name, quantity=2, unit_price=milk.price
            )
            day_start = local_day_start(utc_now(), get_settings().tzinfo)
            for _ in range(args.orders):
                order = store.create_draft(args.user_1, [line])
                store.confirm(order.id, day_start=day_start)

        print(f"Seeded users={args.user_1},{args.user_2}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
