"""Remote Data Channel module."""

from .base import (
    FILES_BUCKET,
    FILES_TABLE,
    MEMBERS_TABLE,
    MESSAGES_TABLE,
    READ_STATUS_TABLE,
    ChangeHandler,
    ErrorHandler,
    IRemoteDataChannel,
    Subscription,
)
from .feed import ChangeFeed
from .filters import Filters, Order, row_matches
from .rest import RestChannel
from .sqlite import SQLiteChannel

__all__ = [
    "IRemoteDataChannel",
    "Subscription",
    "ChangeHandler",
    "ErrorHandler",
    "ChangeFeed",
    "Filters",
    "Order",
    "row_matches",
    "SQLiteChannel",
    "RestChannel",
    "MESSAGES_TABLE",
    "READ_STATUS_TABLE",
    "MEMBERS_TABLE",
    "FILES_TABLE",
    "FILES_BUCKET",
]
