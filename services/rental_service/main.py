from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List, Optional
import logging
import uvicorn

from availability import AvailabilityOracle
from billing import BillingCalculator
from cache import TTLCache
from clock import SystemClock
from config import BUSINESS_TIMEZONE, FLEET_STATUS_CACHE_TTL, LOG_LEVEL, SERVICE_HOST, SERVICE_PORT
from database import engine, get_db, Base
from errors import ConflictError, NotFoundError, ValidationError
from lifecycle import RentalLifecycle
from packages import PackageAssigner
from repository import SqlAlchemyRentalRepository
from reservations import BookingService, ReservationValidator
from schemas import (
    BasePriceResponse, BasePriceUpdate, BookingRequest, CheckoutRequest,
    CheckoutResponse, ConflictResponse, ErrorResponse, PickupRequest,
    RentalResponse, RentalType, ValidationRequest, VehicleAvailabilityResponse,
    VehicleResponse, WindowRequest
)

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rental Service")

system_clock = SystemClock()
fleet_status_cache = TTLCache(FLEET_STATUS_CACHE_TTL, system_clock, name="fleet_status")


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    logger.info("Rental service tables ready")


def get_clock():
    return system_clock


def get_business_tz():
    return BUSINESS_TIMEZONE


def get_fleet_cache():
    return fleet_status_cache


def get_repository(db: Session = Depends(get_db)):
    return SqlAlchemyRentalRepository(db)


def get_validator(repository=Depends(get_repository), clock=Depends(get_clock), business_tz=Depends(get_business_tz)):
    return ReservationValidator(repository, clock, business_tz)


def get_booking_service(repository=Depends(get_repository), validator=Depends(get_validator)):
    return BookingService(repository, validator)


def get_lifecycle(repository=Depends(get_repository), clock=Depends(get_clock)):
    return RentalLifecycle(repository, clock)


def get_billing(repository=Depends(get_repository), clock=Depends(get_clock)):
    return BillingCalculator(repository, PackageAssigner(repository), clock)


def get_oracle(repository=Depends(get_repository), clock=Depends(get_clock)):
    return AvailabilityOracle(repository, clock)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    body = ConflictResponse(message=exc.message)
    rental = exc.conflicting_rental
    if rental is not None:
        body = ConflictResponse(
            message=exc.message,
            conflicting_rental_id=rental.id,
            customer_name=rental.customer_name,
            start_at=rental.start_at,
            end_at=rental.end_at
        )
    return JSONResponse(status_code=409, content=body.model_dump(mode="json", by_alias=True))


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=ErrorResponse(message=exc.message).model_dump())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=ErrorResponse(message=exc.message).model_dump())


@app.get("/manage/health")
def health_check():
    return {"status": "ok", "fleetStatusCache": fleet_status_cache.get_state()}


@app.post("/api/v1/rentals", response_model=RentalResponse, status_code=201)
def create_rental(
    booking: BookingRequest,
    service: BookingService = Depends(get_booking_service),
    cache: TTLCache = Depends(get_fleet_cache)
):
    rental = service.book(booking)
    cache.clear()
    return RentalResponse.model_validate(rental)


@app.post("/api/v1/rentals/validate")
def validate_rental(
    request: ValidationRequest,
    validator: ReservationValidator = Depends(get_validator)
):
    validator.validate(
        request.vehicle_id,
        request.start_at,
        request.end_at,
        exclude_rental_id=request.exclude_rental_id
    )
    return {"status": "ok"}


@app.get("/api/v1/rentals/{rental_id}", response_model=RentalResponse)
def get_rental(rental_id: int, repository=Depends(get_repository)):
    return RentalResponse.model_validate(repository.get_rental(rental_id))


@app.patch("/api/v1/rentals/{rental_id}", response_model=RentalResponse)
def reschedule_rental(
    rental_id: int,
    window: WindowRequest,
    service: BookingService = Depends(get_booking_service),
    cache: TTLCache = Depends(get_fleet_cache)
):
    rental = service.reschedule(rental_id, window.start_at, window.end_at)
    cache.clear()
    return RentalResponse.model_validate(rental)


@app.post("/api/v1/rentals/{rental_id}/pickup", response_model=RentalResponse)
def pickup_rental(
    rental_id: int,
    pickup: Optional[PickupRequest] = None,
    lifecycle: RentalLifecycle = Depends(get_lifecycle),
    cache: TTLCache = Depends(get_fleet_cache)
):
    start_odometer = pickup.start_odometer if pickup else None
    rental = lifecycle.start_rental(rental_id, start_odometer)
    cache.clear()
    return RentalResponse.model_validate(rental)


@app.post("/api/v1/rentals/{rental_id}/cancel", response_model=RentalResponse)
def cancel_rental(
    rental_id: int,
    lifecycle: RentalLifecycle = Depends(get_lifecycle),
    cache: TTLCache = Depends(get_fleet_cache)
):
    rental = lifecycle.cancel_rental(rental_id)
    cache.clear()
    return RentalResponse.model_validate(rental)


@app.post("/api/v1/rentals/{rental_id}/void", response_model=RentalResponse)
def void_rental(
    rental_id: int,
    lifecycle: RentalLifecycle = Depends(get_lifecycle),
    cache: TTLCache = Depends(get_fleet_cache)
):
    rental = lifecycle.void_rental(rental_id)
    cache.clear()
    return RentalResponse.model_validate(rental)


@app.post("/api/v1/rentals/{rental_id}/checkout", response_model=CheckoutResponse)
def checkout_rental(
    rental_id: int,
    checkout: CheckoutRequest,
    billing: BillingCalculator = Depends(get_billing),
    cache: TTLCache = Depends(get_fleet_cache)
):
    result = billing.finalize_checkout(rental_id, checkout.ending_odometer)
    cache.clear()
    return CheckoutResponse(
        rental=RentalResponse.model_validate(result.rental),
        total_distance=result.total_distance,
        overage_charge=result.overage_charge,
        unit_price=result.unit_price,
        pricing_fallback=result.pricing_fallback
    )


@app.post("/api/v1/rentals/{rental_id}/recompute", response_model=CheckoutResponse)
def recompute_rental(
    rental_id: int,
    billing: BillingCalculator = Depends(get_billing),
    cache: TTLCache = Depends(get_fleet_cache)
):
    result = billing.recompute_overage(rental_id)
    cache.clear()
    return CheckoutResponse(
        rental=RentalResponse.model_validate(result.rental),
        total_distance=result.total_distance,
        overage_charge=result.overage_charge,
        unit_price=result.unit_price,
        pricing_fallback=result.pricing_fallback
    )


@app.get("/api/v1/vehicles/status", response_model=List[VehicleResponse])
def get_fleet_status(
    oracle: AvailabilityOracle = Depends(get_oracle),
    cache: TTLCache = Depends(get_fleet_cache)
):
    def load():
        return [
            VehicleResponse(
                vehicle_id=entry.vehicle.id,
                name=entry.vehicle.name,
                plate_number=entry.vehicle.plate_number,
                base_status=entry.vehicle.status,
                current_status=entry.availability.state,
                next_reservation_start=entry.availability.next_reservation_start
            )
            for entry in oracle.fleet_status()
        ]

    return cache.get_or_set("fleet", load)


@app.get("/api/v1/vehicles/available", response_model=List[VehicleResponse])
def get_available_vehicles(
    start: datetime = Query(...),
    end: datetime = Query(...),
    exclude_rental_id: Optional[int] = Query(None, alias="excludeRentalId"),
    validator: ReservationValidator = Depends(get_validator)
):
    return [
        VehicleResponse(
            vehicle_id=item.vehicle.id,
            name=item.vehicle.name,
            plate_number=item.vehicle.plate_number,
            base_status=item.vehicle.status,
            current_status=item.state,
            next_reservation_start=item.next_reservation_start
        )
        for item in validator.available_vehicles(start, end, exclude_rental_id)
    ]


@app.get("/api/v1/vehicles/{vehicle_id}/availability", response_model=VehicleAvailabilityResponse)
def get_vehicle_availability(vehicle_id: int, oracle: AvailabilityOracle = Depends(get_oracle)):
    return VehicleAvailabilityResponse.model_validate(oracle.status(vehicle_id))


@app.put("/api/v1/models/{model_id}/prices/{rental_type}", response_model=BasePriceResponse)
def replace_base_price(
    model_id: int,
    rental_type: RentalType,
    update: BasePriceUpdate,
    repository=Depends(get_repository),
    cache: TTLCache = Depends(get_fleet_cache)
):
    with repository.transaction():
        price = repository.replace_base_price(model_id, rental_type, update.unit_price)
    cache.clear()
    logger.info(f"Base price for model {model_id} {rental_type.value} set to {price.unit_price}")
    return BasePriceResponse.model_validate(price)


if __name__ == "__main__":
    uvicorn.run(app, host=SERVICE_HOST, port=SERVICE_PORT)
