"""Durable storage for events, payments and disbursements."""

from collector_earnings.store.base import RowStore
from collector_earnings.store.sql import SqlRowStore, disbursement_from_row, event_from_row

__all__ = [
    "RowStore",
    "SqlRowStore",
    "disbursement_from_row",
    "event_from_row",
]
