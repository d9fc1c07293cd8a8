from collections import defaultdict
from datetime import datetime, tzinfo
from typing import List, Optional, Tuple
import logging

from availability import compute_availability, next_reservation_start
from clock import ClockSource, as_utc, business_date
from errors import ConflictError, ValidationError
from overlap import overlaps
from repository import RentalRepository
from schemas import (
    AvailableVehicle, BookingRequest, RentalInfo, RentalStatus,
    UNBOOKABLE_VEHICLE_STATUSES
)

logger = logging.getLogger(__name__)


class ReservationValidator:
    """Accepts or rejects a booking window for a vehicle.

    Windows are half-open; a booking may start exactly when another ends.
    Naive datetimes are read as wall-clock times in ``business_tz``.
    """

    def __init__(self, repository: RentalRepository, clock: ClockSource, business_tz: tzinfo):
        self.repository = repository
        self.clock = clock
        self.business_tz = business_tz

    def normalize_window(self, start: datetime, end: datetime, check_start_date: bool = True) -> Tuple[datetime, datetime]:
        start = as_utc(start, self.business_tz)
        end = as_utc(end, self.business_tz)
        if end <= start:
            raise ValidationError("End date must be after start date")
        if check_start_date:
            today = business_date(self.clock.now(), self.business_tz)
            if business_date(start, self.business_tz) < today:
                raise ValidationError("Start date cannot be in the past")
        return start, end

    def find_conflict(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        exclude_rental_id: Optional[int] = None,
        check_start_date: bool = True
    ) -> Optional[RentalInfo]:
        start, end = self.normalize_window(start, end, check_start_date)
        self.repository.get_vehicle(vehicle_id)

        for rental in self.repository.list_non_terminal_rentals(vehicle_id):
            if exclude_rental_id is not None and rental.id == exclude_rental_id:
                continue
            if overlaps(start, end, rental.start_at, rental.end_at):
                logger.info(
                    f"Vehicle {vehicle_id} conflict: requested {start.isoformat()} - {end.isoformat()}, "
                    f"rental {rental.id} ({rental.customer_name}) holds "
                    f"{rental.start_at.isoformat()} - {rental.end_at.isoformat()}"
                )
                return rental
        return None

    def validate(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        exclude_rental_id: Optional[int] = None,
        check_start_date: bool = True
    ) -> None:
        conflict = self.find_conflict(vehicle_id, start, end, exclude_rental_id, check_start_date)
        if conflict is not None:
            raise ConflictError.for_rental(vehicle_id, conflict)

    def available_vehicles(
        self,
        start: datetime,
        end: datetime,
        exclude_rental_id: Optional[int] = None
    ) -> List[AvailableVehicle]:
        """Vehicles free for the whole window, from a single read of the schedule."""
        start, end = self.normalize_window(start, end, check_start_date=False)
        now = self.clock.now()

        by_vehicle = defaultdict(list)
        conflicted = set()
        for rental in self.repository.list_non_terminal_rentals():
            by_vehicle[rental.vehicle_id].append(rental)
            if exclude_rental_id is not None and rental.id == exclude_rental_id:
                continue
            if overlaps(start, end, rental.start_at, rental.end_at):
                conflicted.add(rental.vehicle_id)

        available = []
        for vehicle in self.repository.list_vehicles():
            if vehicle.status in UNBOOKABLE_VEHICLE_STATUSES or vehicle.id in conflicted:
                continue
            rentals = by_vehicle[vehicle.id]
            available.append(AvailableVehicle(
                vehicle=vehicle,
                state=compute_availability(vehicle.id, rentals, now).state,
                next_reservation_start=next_reservation_start(rentals, now)
            ))

        logger.info(
            f"Availability {start.isoformat()} - {end.isoformat()}: "
            f"{len(available)} free, {len(conflicted)} conflicted"
        )
        return available


class BookingService:
    def __init__(self, repository: RentalRepository, validator: ReservationValidator):
        self.repository = repository
        self.validator = validator

    def book(self, request: BookingRequest) -> RentalInfo:
        if request.status not in (RentalStatus.PENDING, RentalStatus.CONFIRMED):
            raise ValidationError(f"New rentals cannot be created as {request.status.value}")

        vehicle = self.repository.get_vehicle(request.vehicle_id)
        if vehicle.status in UNBOOKABLE_VEHICLE_STATUSES:
            raise ValidationError(f"Vehicle {vehicle.id} is {vehicle.status.value} and cannot be booked")

        start, end = self.validator.normalize_window(request.start_at, request.end_at)
        self.validator.validate(vehicle.id, start, end)

        quoted = None
        if vehicle.model_id is not None:
            price = self.repository.get_active_base_price(vehicle.model_id, request.rental_type)
            if price is not None:
                quoted = price.unit_price

        with self.repository.transaction():
            rental = self.repository.add_rental({
                "vehicle_id": vehicle.id,
                "customer_id": request.customer_id,
                "customer_name": request.customer_name,
                "organization_id": request.organization_id,
                "start_at": start,
                "end_at": end,
                "rental_type": request.rental_type,
                "status": request.status,
                "unit_price": quoted,
                "total_amount": quoted,
            })
        logger.info(
            f"Booked rental {rental.id} on vehicle {vehicle.id} "
            f"{start.isoformat()} - {end.isoformat()} for {rental.customer_name}"
        )
        return rental

    def reschedule(self, rental_id: int, start: datetime, end: datetime) -> RentalInfo:
        rental = self.repository.get_rental(rental_id)
        if rental.status.is_terminal:
            raise ValidationError(f"Rental {rental.id} is {rental.status.value} and cannot be rescheduled")

        # A rental already in progress keeps its original (past) start
        in_progress = rental.status == RentalStatus.ACTIVE
        start, end = self.validator.normalize_window(start, end, check_start_date=not in_progress)
        self.validator.validate(
            rental.vehicle_id, start, end,
            exclude_rental_id=rental.id,
            check_start_date=not in_progress
        )

        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {"start_at": start, "end_at": end})
        logger.info(f"Rescheduled rental {rental.id} to {start.isoformat()} - {end.isoformat()}")
        return updated
