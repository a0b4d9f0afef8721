"""Summary queries over seeded data and their rich renderings."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from rich.table import Table

from docseed.models import LoadReport
from docseed.store import DocumentStore

DEFAULT_ORDERS_COLLECTION = "orders"
DEFAULT_SUMMARY_COLLECTIONS = ("users", "products", "orders", "analytics")

# Orders per user with total and average spend, biggest spenders first
USER_ORDER_SUMMARY_PIPELINE: list[dict[str, Any]] = [
    {
        "$group": {
            "_id": "$userId",
            "totalOrders": {"$sum": 1},
            "totalSpent": {"$sum": "$orderSummary.total"},
            "averageOrderValue": {"$avg": "$orderSummary.total"},
        }
    },
    {"$sort": {"totalSpent": -1}},
]


def user_order_summary(
    store: DocumentStore,
    collection: str = DEFAULT_ORDERS_COLLECTION,
) -> list[dict[str, Any]]:
    """Run the user order summary aggregation."""
    return store.aggregate(collection, USER_ORDER_SUMMARY_PIPELINE)


def collection_counts(store: DocumentStore, collections: Iterable[str]) -> dict[str, int]:
    return {name: store.count(name) for name in collections}


def counts_table(counts: dict[str, int], title: str = "Database Initialization Summary") -> Table:
    # Wide enough that rich never wraps the title
    table = Table(title=title, min_width=len(title) + 4)
    table.add_column("Collection", style="cyan")
    table.add_column("Documents", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    return table


def load_report_table(report: LoadReport) -> Table:
    """Counts and indexes per collection after a load."""
    table = Table(title=f"Loaded into {report.database}")
    table.add_column("Collection", style="cyan")
    table.add_column("Documents", justify="right")
    table.add_column("Indexes")
    for name, count in report.counts.items():
        table.add_row(name, str(count), ", ".join(report.indexes.get(name, [])) or "-")
    return table


def order_summary_table(rows: list[dict[str, Any]]) -> Table:
    table = Table(title="User Order Summary")
    table.add_column("User", style="cyan")
    table.add_column("Orders", justify="right")
    table.add_column("Total Spent", justify="right")
    table.add_column("Average Order", justify="right")
    for row in rows:
        table.add_row(
            str(row.get("_id")),
            str(row.get("totalOrders", 0)),
            f"{row.get('totalSpent') or 0:.2f}",
            f"{row.get('averageOrderValue') or 0:.2f}",
        )
    return table
