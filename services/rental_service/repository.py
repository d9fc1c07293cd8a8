from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, List, Optional, Protocol
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
from errors import ConflictError, NotFoundError
from overlap import overlaps
from schemas import (
    BasePriceInfo, PackageInfo, RentalInfo, RentalType, RentalStatus,
    TERMINAL_STATUSES, VehicleInfo, VehicleStatus
)

logger = logging.getLogger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]

# Changing any of these can move a rental into another rental's window
SCHEDULE_FIELDS = {"vehicle_id", "start_at", "end_at", "status"}


class RentalRepository(Protocol):
    """Storage operations the booking and billing core depends on."""

    def transaction(self) -> Iterator["RentalRepository"]: ...

    def list_non_terminal_rentals(self, vehicle_id: Optional[int] = None) -> List[RentalInfo]: ...

    def list_vehicles(self) -> List[VehicleInfo]: ...

    def get_vehicle(self, vehicle_id: int) -> VehicleInfo: ...

    def get_rental(self, rental_id: int) -> RentalInfo: ...

    def get_package(self, package_id: int) -> Optional[PackageInfo]: ...

    def get_active_packages_for_model(self, model_id: int) -> List[PackageInfo]: ...

    def get_active_base_price(self, model_id: int, rental_type: RentalType) -> Optional[BasePriceInfo]: ...

    def replace_base_price(self, model_id: int, rental_type: RentalType, unit_price: Decimal) -> BasePriceInfo: ...

    def add_rental(self, fields: dict) -> RentalInfo: ...

    def update_rental(self, rental_id: int, fields: dict) -> RentalInfo: ...

    def update_vehicle_odometer(self, vehicle_id: int, odometer: Decimal) -> None: ...

    def update_vehicle_status(self, vehicle_id: int, status: VehicleStatus) -> None: ...


class SqlAlchemyRentalRepository:
    def __init__(self, db: Session):
        self.db = db
        self._depth = 0

    @contextmanager
    def transaction(self):
        """Group writes; only the outermost block commits."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.db.commit()
        except Exception:
            if self._depth == 1:
                self.db.rollback()
            raise
        finally:
            self._depth -= 1

    # Reads

    def list_non_terminal_rentals(self, vehicle_id: Optional[int] = None) -> List[RentalInfo]:
        query = self.db.query(models.Rental).filter(
            models.Rental.status.notin_(TERMINAL_VALUES)
        )
        if vehicle_id is not None:
            query = query.filter(models.Rental.vehicle_id == vehicle_id)
        rentals = query.order_by(models.Rental.start_at, models.Rental.id).all()
        return [RentalInfo.model_validate(rental) for rental in rentals]

    def list_vehicles(self) -> List[VehicleInfo]:
        vehicles = self.db.query(models.Vehicle).order_by(models.Vehicle.name, models.Vehicle.id).all()
        return [VehicleInfo.model_validate(vehicle) for vehicle in vehicles]

    def get_vehicle(self, vehicle_id: int) -> VehicleInfo:
        return VehicleInfo.model_validate(self._vehicle_row(vehicle_id))

    def get_rental(self, rental_id: int) -> RentalInfo:
        return RentalInfo.model_validate(self._rental_row(rental_id))

    def get_package(self, package_id: int) -> Optional[PackageInfo]:
        package = self.db.get(models.RentalPackage, package_id)
        if package is None:
            return None
        return PackageInfo.model_validate(package)

    def get_active_packages_for_model(self, model_id: int) -> List[PackageInfo]:
        packages = (
            self.db.query(models.RentalPackage)
            .filter(
                models.RentalPackage.model_id == model_id,
                models.RentalPackage.is_active == True
            )
            .order_by(models.RentalPackage.included_distance.asc(), models.RentalPackage.id.asc())
            .all()
        )
        return [PackageInfo.model_validate(package) for package in packages]

    def get_active_base_price(self, model_id: int, rental_type: RentalType) -> Optional[BasePriceInfo]:
        price = (
            self.db.query(models.BasePrice)
            .filter(
                models.BasePrice.model_id == model_id,
                models.BasePrice.rental_type == RentalType(rental_type).value,
                models.BasePrice.is_active == True
            )
            .order_by(models.BasePrice.created_at.desc(), models.BasePrice.id.desc())
            .first()
        )
        if price is None:
            return None
        return BasePriceInfo.model_validate(price)

    # Writes

    def replace_base_price(self, model_id: int, rental_type: RentalType, unit_price: Decimal) -> BasePriceInfo:
        if self.db.get(models.VehicleModel, model_id) is None:
            raise NotFoundError("Vehicle model", model_id)

        rental_type = RentalType(rental_type).value
        # Old rows stay as price history
        (
            self.db.query(models.BasePrice)
            .filter(
                models.BasePrice.model_id == model_id,
                models.BasePrice.rental_type == rental_type,
                models.BasePrice.is_active == True
            )
            .update({models.BasePrice.is_active: False}, synchronize_session="fetch")
        )
        price = models.BasePrice(
            model_id=model_id,
            rental_type=rental_type,
            unit_price=unit_price,
            is_active=True
        )
        self.db.add(price)
        self.db.flush()
        return BasePriceInfo.model_validate(price)

    def add_rental(self, fields: dict) -> RentalInfo:
        values = _column_values(fields)
        status = RentalStatus(values.get("status", RentalStatus.CONFIRMED.value))
        if not status.is_terminal:
            self._guard_window(values["vehicle_id"], values["start_at"], values["end_at"])

        rental = models.Rental(**values)
        self.db.add(rental)
        self._flush()
        logger.info(f"Stored rental {rental.id} for vehicle {rental.vehicle_id}")
        return RentalInfo.model_validate(rental)

    def update_rental(self, rental_id: int, fields: dict) -> RentalInfo:
        rental = self._rental_row(rental_id)
        values = _column_values(fields)

        if SCHEDULE_FIELDS & values.keys():
            vehicle_id = values.get("vehicle_id", rental.vehicle_id)
            status = RentalStatus(values.get("status", rental.status))
            if not status.is_terminal:
                self._guard_window(
                    vehicle_id,
                    values.get("start_at", rental.start_at),
                    values.get("end_at", rental.end_at),
                    exclude_rental_id=rental.id
                )

        for name, value in values.items():
            setattr(rental, name, value)
        self._flush()
        return RentalInfo.model_validate(rental)

    def update_vehicle_odometer(self, vehicle_id: int, odometer: Decimal) -> None:
        vehicle = self._vehicle_row(vehicle_id)
        vehicle.current_odometer = odometer
        self.db.flush()

    def update_vehicle_status(self, vehicle_id: int, status: VehicleStatus) -> None:
        vehicle = self._vehicle_row(vehicle_id)
        vehicle.status = VehicleStatus(status).value
        self.db.flush()

    # Helpers

    def _vehicle_row(self, vehicle_id: int, lock: bool = False) -> models.Vehicle:
        query = self.db.query(models.Vehicle).filter(models.Vehicle.id == vehicle_id)
        if lock:
            query = query.with_for_update()
        vehicle = query.first()
        if vehicle is None:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    def _rental_row(self, rental_id: int) -> models.Rental:
        rental = self.db.get(models.Rental, rental_id)
        if rental is None:
            raise NotFoundError("Rental", rental_id)
        return rental

    def _guard_window(self, vehicle_id, start_at, end_at, exclude_rental_id=None):
        # Locking the vehicle row serialises concurrent writers on the same vehicle
        self._vehicle_row(vehicle_id, lock=True)
        for other in self.list_non_terminal_rentals(vehicle_id):
            if other.id == exclude_rental_id:
                continue
            if overlaps(start_at, end_at, other.start_at, other.end_at):
                logger.warning(
                    f"Write-time conflict on vehicle {vehicle_id} with rental {other.id}"
                )
                raise ConflictError.for_rental(vehicle_id, other)

    def _flush(self):
        try:
            self.db.flush()
        except IntegrityError as e:
            if models.NO_OVERLAP_CONSTRAINT in str(e.orig):
                logger.warning(f"Overlap constraint rejected write: {e.orig}")
                raise ConflictError(
                    "Vehicle is already booked for the selected period"
                ) from e
            raise


def _column_values(fields: dict) -> dict:
    values = {}
    for name, value in fields.items():
        if isinstance(value, (RentalStatus, RentalType, VehicleStatus)):
            value = value.value
        values[name] = value
    return values
