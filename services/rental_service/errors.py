from typing import Optional


class RentalServiceError(Exception):
    """Base class for errors raised by the booking and billing core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConflictError(RentalServiceError):
    """A non-terminal rental already occupies the requested window.

    ``conflicting_rental`` is None when the conflict was detected by the
    database constraint rather than by the pre-check.
    """

    def __init__(self, message: str, conflicting_rental=None):
        super().__init__(message)
        self.conflicting_rental = conflicting_rental

    @classmethod
    def for_rental(cls, vehicle_id: int, rental) -> "ConflictError":
        message = (
            f"Vehicle {vehicle_id} is already booked from "
            f"{rental.start_at.isoformat()} to {rental.end_at.isoformat()} "
            f"(rental {rental.id}, customer {rental.customer_name})"
        )
        return cls(message, conflicting_rental=rental)


class ValidationError(RentalServiceError):
    pass


class NotFoundError(RentalServiceError):
    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class PricingUnavailable(RentalServiceError):
    """No active base price for a (model, rental type) pair."""

    def __init__(self, model_id: Optional[int], rental_type: str):
        super().__init__(
            f"No active base price for model {model_id} and rental type {rental_type}"
        )
        self.model_id = model_id
        self.rental_type = rental_type
