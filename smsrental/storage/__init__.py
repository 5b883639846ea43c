"""SQLite-backed rental registry and message dedup store."""

from smsrental.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from smsrental.storage.messages import MessageStore, UpsertResult
from smsrental.storage.rentals import REGISTERED_PROVIDERS, RentalRepository

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "RentalRepository",
    "REGISTERED_PROVIDERS",
    "MessageStore",
    "UpsertResult",
]
