"""
MongoDB Stores

Booking and vehicle persistence on top of pymongo. Stores translate
between pydantic models and BSON documents:

- Decimal amounts  <-> Decimal128
- calendar dates   <-> midnight UTC datetimes
- ``_id`` ObjectId <-> ``id`` string

and translate pymongo failures into the booking error taxonomy.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bson import ObjectId
from bson.decimal128 import Decimal128
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from database import create_document, get_documents
from errors import DuplicateReference, PersistenceError, ValidationFailed
from schemas import Booking, BookingStatus, CustomPrice, Vehicle, to_decimal

logger = logging.getLogger(__name__)


# Utilities to convert between models and MongoDB documents
def encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def to_document(model) -> dict:
    return encode_value(model.model_dump(exclude={"id"}))


def from_document(model_class, doc: Optional[dict]):
    if doc is None:
        return None
    data = dict(doc)
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    return model_class.model_validate(data)


def object_id(value: str, entity: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationFailed(f"Invalid {entity}_id", field=f"{entity}Id")
    return ObjectId(value)


@contextmanager
def storage_errors(operation: str):
    try:
        yield
    except PyMongoError as exc:
        transient = isinstance(exc, ConnectionFailure)
        logger.error(f"MongoDB {operation} failed (transient={transient}): {exc}")
        raise PersistenceError(f"Storage failure during {operation}", transient=transient) from exc


class MongoBookingStore:
    collection_name = "booking"

    def __init__(self, database: Database):
        self.db = database
        self.collection = database[self.collection_name]

    def insert(self, booking: Booking) -> Booking:
        doc = to_document(booking)
        try:
            with storage_errors("booking insert"):
                booking_id = create_document(self.collection_name, doc, database=self.db)
        except PersistenceError as exc:
            cause = exc.__cause__
            if isinstance(cause, DuplicateKeyError) and "booking_reference" in str(cause):
                raise DuplicateReference(booking.booking_reference) from cause
            raise
        return booking.model_copy(update={"id": booking_id})

    def get(self, booking_id: str) -> Optional[Booking]:
        oid = object_id(booking_id, "booking")
        with storage_errors("booking lookup"):
            doc = self.collection.find_one({"_id": oid})
        return from_document(Booking, doc)

    def find_overlapping(
        self,
        vehicle_ids: Sequence[str],
        start: date,
        end: date,
        statuses: Iterable[BookingStatus],
    ) -> List[Booking]:
        query = {
            "vehicle_id": {"$in": list(vehicle_ids)},
            "status": {"$in": [BookingStatus(s).value for s in statuses]},
            "pickup_date": {"$lte": encode_value(end)},
            "return_date": {"$gte": encode_value(start)},
        }
        with storage_errors("availability query"):
            docs = list(self.collection.find(query))
        return [from_document(Booking, doc) for doc in docs]

    def find_for_vehicle(self, vehicle_id: str, statuses: Iterable[BookingStatus]) -> List[Booking]:
        query = {
            "vehicle_id": vehicle_id,
            "status": {"$in": [BookingStatus(s).value for s in statuses]},
        }
        with storage_errors("vehicle bookings query"):
            docs = list(self.collection.find(query).sort("pickup_date", 1))
        return [from_document(Booking, doc) for doc in docs]

    def find_by_email(self, email: str, reference: Optional[str] = None) -> List[Booking]:
        query = {"client_info.email": email}
        if reference:
            query["booking_reference"] = reference
        with storage_errors("booking lookup by email"):
            docs = list(self.collection.find(query).sort("created_at", DESCENDING))
        return [from_document(Booking, doc) for doc in docs]

    def list_bookings(self, status: Optional[BookingStatus] = None, limit: Optional[int] = None, offset: int = 0) -> List[Booking]:
        query = {"status": BookingStatus(status).value} if status else {}
        with storage_errors("booking listing"):
            cursor = self.collection.find(query).sort("created_at", DESCENDING).skip(offset)
            if limit:
                cursor = cursor.limit(limit)
            docs = list(cursor)
        return [from_document(Booking, doc) for doc in docs]

    def count(self, status: Optional[BookingStatus] = None) -> int:
        query = {"status": BookingStatus(status).value} if status else {}
        with storage_errors("booking count"):
            return self.collection.count_documents(query)

    def count_covering(self, day: date, statuses: Iterable[BookingStatus]) -> int:
        """Bookings in ``statuses`` whose range includes ``day``."""
        query = {
            "status": {"$in": [BookingStatus(s).value for s in statuses]},
            "pickup_date": {"$lte": encode_value(day)},
            "return_date": {"$gte": encode_value(day)},
        }
        with storage_errors("active rentals count"):
            return self.collection.count_documents(query)

    def count_pickups_after(self, day: date, status: BookingStatus) -> int:
        query = {"status": BookingStatus(status).value, "pickup_date": {"$gt": encode_value(day)}}
        with storage_errors("upcoming bookings count"):
            return self.collection.count_documents(query)

    def total_cost(self, statuses: Iterable[BookingStatus]) -> Decimal:
        pipeline = [
            {"$match": {"status": {"$in": [BookingStatus(s).value for s in statuses]}}},
            {"$group": {"_id": None, "total": {"$sum": "$pricing.total_cost"}}},
        ]
        with storage_errors("earnings aggregate"):
            rows = list(self.collection.aggregate(pipeline))
        if not rows:
            return Decimal("0.00")
        return Decimal(to_decimal(rows[0]["total"])).quantize(Decimal("0.01"))

    def update_contact(self, booking_id: str, fields: Dict[str, str]) -> Optional[Booking]:
        """Set ``client_info`` fields by their snake_case names."""
        changes = {f"client_info.{name}": value for name, value in fields.items()}
        changes["updated_at"] = datetime.now(timezone.utc)
        with storage_errors("booking contact update"):
            doc = self.collection.find_one_and_update(
                {"_id": object_id(booking_id, "booking")},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        return from_document(Booking, doc)

    def update_status(
        self,
        booking_id: str,
        status: BookingStatus,
        expected: Optional[BookingStatus] = None,
    ) -> Optional[Booking]:
        """Set status; with ``expected`` the write only applies if the status is unchanged."""
        query = {"_id": object_id(booking_id, "booking")}
        if expected is not None:
            query["status"] = BookingStatus(expected).value
        update = {"$set": {"status": BookingStatus(status).value, "updated_at": datetime.now(timezone.utc)}}
        with storage_errors("booking status update"):
            doc = self.collection.find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
        return from_document(Booking, doc)


class MongoVehicleStore:
    collection_name = "vehicle"

    def __init__(self, database: Database):
        self.db = database
        self.collection = database[self.collection_name]

    def get(self, vehicle_id: str) -> Optional[Vehicle]:
        oid = object_id(vehicle_id, "vehicle")
        with storage_errors("vehicle lookup"):
            doc = self.collection.find_one({"_id": oid})
        return from_document(Vehicle, doc)

    def list_vehicles(self, status: Optional[str] = None) -> List[Vehicle]:
        with storage_errors("vehicle listing"):
            docs = get_documents(self.collection_name, {"status": status} if status else {}, database=self.db)
        return [from_document(Vehicle, doc) for doc in docs]

    def insert(self, vehicle: Vehicle) -> Vehicle:
        with storage_errors("vehicle insert"):
            vehicle_id = create_document(self.collection_name, to_document(vehicle), database=self.db)
        return vehicle.model_copy(update={"id": vehicle_id})

    def upsert_custom_price(self, vehicle_id: str, entry: CustomPrice) -> Optional[Vehicle]:
        """Replace the override for ``entry.date`` in place, or append it."""
        oid = object_id(vehicle_id, "vehicle")
        day = encode_value(entry.date)
        doc = to_document(entry)
        with storage_errors("custom price upsert"):
            # A concurrent writer can push the same date between the two updates; retry the replace then
            for _ in range(3):
                now = datetime.now(timezone.utc)
                result = self.collection.update_one(
                    {"_id": oid, "custom_pricing.date": day},
                    {"$set": {"custom_pricing.$": doc, "updated_at": now}},
                )
                if result.matched_count:
                    break
                result = self.collection.update_one(
                    {"_id": oid, "custom_pricing.date": {"$ne": day}},
                    {"$push": {"custom_pricing": doc}, "$set": {"updated_at": now}},
                )
                if result.matched_count:
                    break
                if self.collection.count_documents({"_id": oid}, limit=1) == 0:
                    return None
            else:
                raise PersistenceError("Custom price update kept losing to concurrent writers", transient=True)
            doc = self.collection.find_one({"_id": oid})
        return from_document(Vehicle, doc)

    def remove_custom_price(self, vehicle_id: str, day: date) -> Optional[Vehicle]:
        oid = object_id(vehicle_id, "vehicle")
        with storage_errors("custom price removal"):
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$pull": {"custom_pricing": {"date": encode_value(day)}}, "$set": {"updated_at": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER,
            )
        return from_document(Vehicle, doc)

    def replace_custom_pricing(self, vehicle_id: str, entries: List[CustomPrice]) -> Optional[Vehicle]:
        oid = object_id(vehicle_id, "vehicle")
        with storage_errors("custom pricing replace"):
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {"custom_pricing": [to_document(e) for e in entries], "updated_at": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER,
            )
        return from_document(Vehicle, doc)
