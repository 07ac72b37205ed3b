import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field

import database
from availability import Conflict
from bookings import BookingService
from config import get_settings
from custom_pricing import CustomPricingService
from errors import BookingError, validation_failed_from_errors
from logging_config import configure_logging
from pricing import ADD_ON_NAMES
from schemas import Booking, BookingRequest, BookingStatus, CamelModel, Money, Vehicle
from stores import MongoBookingStore, MongoVehicleStore


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if database.db is not None:
        database.ensure_indexes()
    yield
    database.close_client()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = validation_failed_from_errors(list(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Dependencies
def get_vehicle_store() -> MongoVehicleStore:
    return MongoVehicleStore(database.require_db())


def get_booking_store() -> MongoBookingStore:
    return MongoBookingStore(database.require_db())


def get_booking_service(
    bookings: MongoBookingStore = Depends(get_booking_store),
    vehicles: MongoVehicleStore = Depends(get_vehicle_store),
) -> BookingService:
    return BookingService(bookings, vehicles)


def get_pricing_service(vehicles: MongoVehicleStore = Depends(get_vehicle_store)) -> CustomPricingService:
    return CustomPricingService(vehicles)


# Serialization
def dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def calendar_entry(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "startDate": booking.pickup_date.isoformat(),
        "endDate": booking.return_date.isoformat(),
        "rentalDays": booking.rental_days,
        "status": booking.status.value,
        "bookingReference": booking.booking_reference,
        "customerName": booking.client_info.display_name,
        "totalCost": float(booking.pricing.total_cost),
        "createdAt": booking.created_at.isoformat(),
    }


def parse_add_ons(value: Optional[str]) -> Dict[str, bool]:
    if not value:
        return {}
    return {name.strip(): True for name in value.split(",") if name.strip()}


@app.get("/")
def read_root():
    return {"message": "Car Rental Backend is running"}


# Vehicles Endpoints
class CreateVehicleRequest(CamelModel):
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    daily_rate: Money = Field(..., ge=0)
    currency: Literal["EUR", "USD", "GBP", "HRK"] = "EUR"
    location: Optional[str] = None


@app.get("/api/vehicles")
def list_vehicles(status: Optional[str] = None, vehicles: MongoVehicleStore = Depends(get_vehicle_store)):
    return {"success": True, "vehicles": [dump(v) for v in vehicles.list_vehicles(status=status)]}


@app.post("/api/vehicles", status_code=201)
def add_vehicle(payload: CreateVehicleRequest, vehicles: MongoVehicleStore = Depends(get_vehicle_store)):
    vehicle = Vehicle.model_validate(payload.model_dump())
    created = vehicles.insert(vehicle)
    return {"success": True, "vehicle": dump(created)}


@app.get("/api/vehicles/availability")
def check_availability(
    pickup_date: Optional[str] = Query(None, alias="pickupDate"),
    return_date: Optional[str] = Query(None, alias="returnDate"),
    vehicle_id: Optional[str] = Query(None, alias="vehicleId"),
    service: BookingService = Depends(get_booking_service),
):
    available, pickup, return_ = service.available_vehicles(pickup_date, return_date, vehicle_id)
    message = None
    if not available:
        message = "Vehicle not found or not available" if vehicle_id else "No vehicles available"
    return {
        "success": True,
        "availableVehicles": [dump(v) for v in available],
        "totalAvailable": len(available),
        "message": message,
        "requestedPeriod": {
            "pickupDate": pickup.isoformat(),
            "returnDate": return_.isoformat(),
            "days": (return_ - pickup).days + 1,
        },
    }


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, service: BookingService = Depends(get_booking_service)):
    return {"success": True, "vehicle": dump(service.get_vehicle(vehicle_id))}


@app.get("/api/vehicles/{vehicle_id}/bookings")
def vehicle_bookings(vehicle_id: str, service: BookingService = Depends(get_booking_service)):
    return {"success": True, "bookings": [calendar_entry(b) for b in service.vehicle_bookings(vehicle_id)]}


@app.get("/api/vehicles/{vehicle_id}/quote")
def quote_vehicle(
    vehicle_id: str,
    pickup_date: Optional[str] = Query(None, alias="pickupDate"),
    return_date: Optional[str] = Query(None, alias="returnDate"),
    cdw_coverage: str = Query("basic", alias="cdwCoverage"),
    add_ons: Optional[str] = Query(None, alias="addOns"),
    service: BookingService = Depends(get_booking_service),
):
    quote = service.quote(vehicle_id, pickup_date, return_date, cdw_coverage, parse_add_ons(add_ons))
    conflicts: List[Conflict] = quote["conflicts"]
    return {
        "success": True,
        "vehicleId": quote["vehicle"].id,
        "currency": quote["vehicle"].currency,
        "pickupDate": quote["pickup_date"].isoformat(),
        "returnDate": quote["return_date"].isoformat(),
        "rentalDays": quote["rental_days"],
        "pricedDays": quote["priced_days"],
        "pricing": dump(quote["pricing"]),
        "available": quote["available"],
        "conflicts": [c.to_dict() for c in conflicts],
    }


# Custom Pricing Endpoints
class CustomPriceRequest(CamelModel):
    date: Optional[str] = None
    price: Optional[Decimal] = None
    label: Optional[str] = None
    type: Optional[str] = None


class ReplacePricingRequest(CamelModel):
    pricing: Any = None


class RemovePriceRequest(CamelModel):
    date: Optional[str] = None


@app.get("/api/vehicles/{vehicle_id}/pricing")
def get_pricing(vehicle_id: str, service: CustomPricingService = Depends(get_pricing_service)):
    return {"success": True, "pricing": [dump(p) for p in service.get_pricing(vehicle_id)]}


@app.get("/api/vehicles/{vehicle_id}/pricing/calendar")
def get_pricing_calendar(
    vehicle_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    service: CustomPricingService = Depends(get_pricing_service),
):
    return {"success": True, "days": [dump(d) for d in service.price_calendar(vehicle_id, start, end)]}


@app.post("/api/vehicles/{vehicle_id}/pricing")
def add_pricing(vehicle_id: str, payload: CustomPriceRequest, service: CustomPricingService = Depends(get_pricing_service)):
    entry = service.set_price(vehicle_id, payload.date, payload.price, payload.label, payload.type)
    return {
        "success": True,
        "pricing": dump(entry),
        "allPricing": [dump(p) for p in service.get_pricing(vehicle_id)],
    }


@app.put("/api/vehicles/{vehicle_id}/pricing")
def replace_pricing(vehicle_id: str, payload: ReplacePricingRequest, service: CustomPricingService = Depends(get_pricing_service)):
    pricing = service.replace_pricing(vehicle_id, payload.pricing)
    return {"success": True, "pricing": [dump(p) for p in pricing]}


@app.delete("/api/vehicles/{vehicle_id}/pricing")
def remove_pricing(vehicle_id: str, payload: RemovePriceRequest, service: CustomPricingService = Depends(get_pricing_service)):
    pricing = service.remove_price(vehicle_id, payload.date)
    return {"success": True, "allPricing": [dump(p) for p in pricing]}


# Bookings Endpoints
class ContactUpdate(CamelModel):
    phone_number: Optional[str] = None
    flight_number: Optional[str] = None


class BookingUpdateRequest(CamelModel):
    status: Optional[str] = None
    client_info: Optional[ContactUpdate] = None


class BulkUpdateRequest(CamelModel):
    booking_ids: Any = None
    updates: Optional[Dict[str, Any]] = None


@app.post("/api/bookings", status_code=201)
def create_booking(payload: BookingRequest, service: BookingService = Depends(get_booking_service)):
    booking = service.create_booking(payload)
    return {"success": True, "booking": dump(booking)}


@app.get("/api/bookings")
def find_bookings(
    email: Optional[str] = None,
    reference: Optional[str] = None,
    service: BookingService = Depends(get_booking_service),
):
    bookings = service.find_customer_bookings(email, reference)
    return {"success": True, "bookings": [dump(b) for b in bookings]}


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    return {"success": True, "booking": dump(service.get_booking(booking_id))}


@app.put("/api/bookings/{booking_id}")
def update_booking(booking_id: str, payload: BookingUpdateRequest, service: BookingService = Depends(get_booking_service)):
    contact = payload.client_info or ContactUpdate()
    booking = service.update_booking(booking_id, payload.status, contact.phone_number, contact.flight_number)
    return {"success": True, "booking": dump(booking)}


@app.delete("/api/bookings/{booking_id}")
def cancel_booking(booking_id: str, service: BookingService = Depends(get_booking_service)):
    service.cancel_booking(booking_id)
    return {"success": True, "message": "Booking cancelled successfully"}


@app.get("/api/admin/bookings")
def admin_list_bookings(
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    service: BookingService = Depends(get_booking_service),
):
    bookings, total = service.list_bookings(status, limit, offset)
    return {
        "success": True,
        "bookings": [dump(b) for b in bookings],
        "totalCount": total,
        "pagination": {
            "limit": limit,
            "offset": offset,
            "hasMore": bool(limit) and offset + limit < total,
        },
    }


@app.put("/api/admin/bookings")
def admin_bulk_update(payload: BulkUpdateRequest, service: BookingService = Depends(get_booking_service)):
    updates = payload.updates or {}
    modified, failures = service.bulk_update_status(payload.booking_ids, updates.get("status"))
    return {
        "success": True,
        "message": f"Updated {modified} booking(s)",
        "modifiedCount": modified,
        "failed": failures,
    }


# Dashboard Endpoints
@app.get("/api/dashboard/stats")
def dashboard_stats(service: BookingService = Depends(get_booking_service)):
    stats = service.dashboard_stats()
    return {
        "success": True,
        "stats": {
            "activeRentals": stats["active_rentals"],
            "totalBookings": stats["total_bookings"],
            "upcomingBookings": stats["upcoming_bookings"],
            "totalEarned": float(stats["total_earned"]),
        },
    }


@app.get("/health")
def health_check():
    response = {
        "backend": "running",
        "database": "not configured",
        "database_name": None,
        "collections": [],
        "addOns": list(ADD_ON_NAMES),
        "statuses": [s.value for s in BookingStatus],
    }

    if database.db is None:
        return response

    response["database_name"] = database.db.name
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "connected"
    except Exception as e:
        response["database"] = f"error: {str(e)[:50]}"

    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
