from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple
import logging

from clock import ClockSource
from errors import PricingUnavailable, ValidationError
from packages import PackageAssigner
from repository import RentalRepository
from schemas import CheckoutResult, RentalInfo, RentalStatus, VehicleInfo, VehicleStatus

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
TENTHS = Decimal("0.1")
ZERO = Decimal("0")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_overage(total_distance: Decimal, included_distance: Decimal, extra_distance_rate: Decimal) -> Decimal:
    """Charge for distance beyond the package allowance.

    Only a positive allowance is metered; a zero allowance never bills overage.
    """
    included = included_distance or ZERO
    if included > 0 and total_distance > included:
        return to_money((total_distance - included) * (extra_distance_rate or ZERO))
    return to_money(ZERO)


class BillingCalculator:
    def __init__(self, repository: RentalRepository, package_assigner: PackageAssigner, clock: ClockSource):
        self.repository = repository
        self.package_assigner = package_assigner
        self.clock = clock

    def finalize_checkout(self, rental_id: int, ending_odometer: Optional[Decimal]) -> CheckoutResult:
        rental = self.repository.get_rental(rental_id)
        vehicle = self.repository.get_vehicle(rental.vehicle_id)

        if rental.status in (RentalStatus.PENDING, RentalStatus.CONFIRMED):
            raise ValidationError(f"Rental {rental.id} has not been picked up yet")
        if rental.status != RentalStatus.ACTIVE:
            raise ValidationError(f"Rental {rental.id} is already {rental.status.value}")
        if ending_odometer is None:
            raise ValidationError("Ending odometer reading is required")
        if rental.start_odometer is None:
            raise ValidationError(f"Rental {rental.id} has no starting odometer reading")

        # Odometers are stored to a tenth of a kilometre
        ending_odometer = Decimal(ending_odometer).quantize(TENTHS, rounding=ROUND_HALF_UP)
        total_distance = ending_odometer - rental.start_odometer
        if total_distance < 0:
            raise ValidationError(
                f"Ending odometer {ending_odometer} is below starting odometer {rental.start_odometer}"
            )

        rental = self.package_assigner.ensure_package(rental)
        unit_price, fallback = self._unit_price(rental, vehicle, rental.total_amount)
        overage_charge = compute_overage(total_distance, rental.included_distance, rental.extra_distance_rate)

        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {
                "ending_odometer": ending_odometer,
                "total_kilometers_driven": total_distance,
                "has_overage": overage_charge > 0,
                "unit_price": unit_price,
                "overage_charge": overage_charge,
                "total_amount": unit_price + overage_charge,
                "status": RentalStatus.COMPLETED,
                "completed_at": self.clock.now(),
            })
            self.repository.update_vehicle_odometer(vehicle.id, ending_odometer)
            if vehicle.status == VehicleStatus.RENTED:
                self.repository.update_vehicle_status(vehicle.id, VehicleStatus.AVAILABLE)

        logger.info(
            f"Checked out rental {rental.id}: distance {total_distance}, "
            f"unit price {unit_price}, overage {overage_charge}, total {updated.total_amount}"
        )
        return CheckoutResult(
            rental=updated,
            total_distance=total_distance,
            overage_charge=overage_charge,
            unit_price=unit_price,
            pricing_fallback=fallback
        )

    def recompute_overage(self, rental_id: int) -> CheckoutResult:
        """Re-price a finalized rental from its stored distance, e.g. after a price-table fix."""
        rental = self.repository.get_rental(rental_id)
        if rental.total_kilometers_driven is None:
            raise ValidationError(f"Rental {rental.id} has not been checked out yet")
        vehicle = self.repository.get_vehicle(rental.vehicle_id)

        # Only the package chosen at checkout is consulted
        included_distance = rental.included_distance
        extra_distance_rate = rental.extra_distance_rate
        package = self.repository.get_package(rental.package_id) if rental.package_id is not None else None
        if package is not None:
            included_distance = package.included_distance
            extra_distance_rate = package.extra_distance_rate

        # Stored total already contains the old overage
        unit_price, fallback = self._unit_price(rental, vehicle, rental.unit_price)
        total_distance = rental.total_kilometers_driven
        overage_charge = compute_overage(total_distance, included_distance, extra_distance_rate)

        with self.repository.transaction():
            updated = self.repository.update_rental(rental.id, {
                "included_distance": included_distance,
                "extra_distance_rate": extra_distance_rate,
                "has_overage": overage_charge > 0,
                "unit_price": unit_price,
                "overage_charge": overage_charge,
                "total_amount": unit_price + overage_charge,
            })

        logger.info(f"Recomputed rental {rental.id}: overage {overage_charge}, total {updated.total_amount}")
        return CheckoutResult(
            rental=updated,
            total_distance=total_distance,
            overage_charge=overage_charge,
            unit_price=unit_price,
            pricing_fallback=fallback
        )

    def _unit_price(self, rental: RentalInfo, vehicle: VehicleInfo, stored: Optional[Decimal]) -> Tuple[Decimal, bool]:
        try:
            return self._lookup_base_price(rental, vehicle), False
        except PricingUnavailable as e:
            fallback = to_money(stored or ZERO)
            logger.warning(f"{e.message}; billing rental {rental.id} at stored amount {fallback}")
            return fallback, True

    def _lookup_base_price(self, rental: RentalInfo, vehicle: VehicleInfo) -> Decimal:
        if vehicle.model_id is None:
            raise PricingUnavailable(None, rental.rental_type.value)
        price = self.repository.get_active_base_price(vehicle.model_id, rental.rental_type)
        if price is None:
            raise PricingUnavailable(vehicle.model_id, rental.rental_type.value)
        return to_money(price.unit_price)
