"""
Database Helpers

MongoDB access shared by the API. ``db`` is None until DATABASE_URL and
DATABASE_NAME are configured.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import PersistenceError

logger = logging.getLogger(__name__)

settings = get_settings()

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_configured:
    _client = MongoClient(settings.DATABASE_URL, tz_aware=True)
    db = _client[settings.DATABASE_NAME]


def require_db(database: Optional[Database] = None) -> Database:
    database = database if database is not None else db
    if database is None:
        raise PersistenceError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return database


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    database = require_db(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    database: Optional[Database] = None,
) -> list:
    database = require_db(database)
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Optional[Database] = None) -> None:
    """Create the indexes the booking core relies on. Safe to call repeatedly."""
    database = require_db(database)
    booking = database["booking"]
    booking.create_index([("booking_reference", ASCENDING)], unique=True, name="uq_booking_reference")
    booking.create_index(
        [("vehicle_id", ASCENDING), ("status", ASCENDING), ("pickup_date", ASCENDING)],
        name="ix_booking_vehicle_status_pickup",
    )
    booking.create_index([("client_info.email", ASCENDING)], name="ix_booking_email")
    booking.create_index([("created_at", DESCENDING)], name="ix_booking_created")
    database["vehicle"].create_index([("status", ASCENDING), ("location", ASCENDING)], name="ix_vehicle_status_location")
    logger.info("MongoDB indexes ensured")


def close_client() -> None:
    if _client is not None:
        _client.close()
