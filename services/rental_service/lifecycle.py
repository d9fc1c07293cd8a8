from decimal import Decimal
from typing import Optional
import logging

from clock import ClockSource
from errors import ValidationError
from repository import RentalRepository
from schemas import RentalInfo, RentalStatus, VehicleStatus

logger = logging.getLogger(__name__)


class RentalLifecycle:
    def __init__(self, repository: RentalRepository, clock: ClockSource):
        self.repository = repository
        self.clock = clock

    def start_rental(self, rental_id: int, start_odometer: Optional[Decimal] = None) -> RentalInfo:
        """Pickup: the customer takes the vehicle and the rental becomes active."""
        rental = self.repository.get_rental(rental_id)
        if rental.status not in (RentalStatus.PENDING, RentalStatus.CONFIRMED):
            raise ValidationError(f"Rental {rental.id} is {rental.status.value}, it cannot be picked up")

        vehicle = self.repository.get_vehicle(rental.vehicle_id)
        if start_odometer is None:
            start_odometer = vehicle.current_odometer
        if start_odometer < vehicle.current_odometer:
            raise ValidationError(
                f"Start odometer {start_odometer} is below vehicle odometer {vehicle.current_odometer}"
            )

        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {
                "status": RentalStatus.ACTIVE,
                "start_odometer": start_odometer,
                "picked_up_at": self.clock.now(),
            })
            self.repository.update_vehicle_status(vehicle.id, VehicleStatus.RENTED)
        logger.info(f"Rental {rental.id} picked up at odometer {start_odometer}")
        return updated

    def cancel_rental(self, rental_id: int) -> RentalInfo:
        return self._close(rental_id, RentalStatus.CANCELLED)

    def void_rental(self, rental_id: int) -> RentalInfo:
        return self._close(rental_id, RentalStatus.VOID)

    def _close(self, rental_id: int, status: RentalStatus) -> RentalInfo:
        rental = self.repository.get_rental(rental_id)
        if rental.status.is_terminal:
            raise ValidationError(f"Cannot {status.value} a {rental.status.value} rental")

        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {"status": status})
            if rental.status == RentalStatus.ACTIVE:
                self.repository.update_vehicle_status(rental.vehicle_id, VehicleStatus.AVAILABLE)
        logger.info(f"Rental {rental.id} {rental.status.value} -> {status.value}")
        return updated
