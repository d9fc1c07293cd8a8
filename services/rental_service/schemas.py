from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class RentalStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RentalStatus.COMPLETED, RentalStatus.CANCELLED, RentalStatus.VOID}
)


class RentalType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"


UNBOOKABLE_VEHICLE_STATUSES = frozenset(
    {VehicleStatus.MAINTENANCE, VehicleStatus.OUT_OF_SERVICE}
)


class AvailabilityState(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    RESERVED = "reserved"


# Records handed out by the repository

class VehicleInfo(BaseModel):
    id: int
    model_id: Optional[int] = None
    name: str
    plate_number: Optional[str] = None
    status: VehicleStatus
    current_odometer: Decimal = Decimal("0")

    class Config:
        from_attributes = True


class PackageInfo(BaseModel):
    id: int
    model_id: int
    name: str
    included_distance: Decimal
    extra_distance_rate: Decimal
    base_price: Optional[Decimal] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class BasePriceInfo(BaseModel):
    id: int
    model_id: int
    rental_type: RentalType
    unit_price: Decimal
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RentalInfo(BaseModel):
    id: int
    vehicle_id: int
    customer_id: Optional[int] = None
    customer_name: str
    organization_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    rental_type: RentalType
    status: RentalStatus
    package_id: Optional[int] = None
    included_distance: Decimal = Decimal("0")
    extra_distance_rate: Decimal = Decimal("0")
    start_odometer: Optional[Decimal] = None
    ending_odometer: Optional[Decimal] = None
    total_kilometers_driven: Optional[Decimal] = None
    has_overage: bool = False
    unit_price: Optional[Decimal] = None
    overage_charge: Decimal = Decimal("0")
    total_amount: Optional[Decimal] = None
    picked_up_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VehicleAvailability(BaseModel):
    vehicle_id: int
    state: AvailabilityState
    next_reservation_start: Optional[datetime] = None


class FleetVehicleStatus(BaseModel):
    vehicle: VehicleInfo
    availability: VehicleAvailability


class AvailableVehicle(BaseModel):
    vehicle: VehicleInfo
    state: AvailabilityState
    next_reservation_start: Optional[datetime] = None


class CheckoutResult(BaseModel):
    rental: RentalInfo
    total_distance: Decimal
    overage_charge: Decimal
    unit_price: Decimal
    pricing_fallback: bool = False


class BookingRequest(BaseModel):
    vehicle_id: int = Field(validation_alias="vehicleId")
    customer_id: Optional[int] = Field(default=None, validation_alias="customerId")
    customer_name: str = Field(validation_alias="customerName")
    organization_id: Optional[str] = Field(default=None, validation_alias="organizationId")
    start_at: datetime = Field(validation_alias="startAt")
    end_at: datetime = Field(validation_alias="endAt")
    rental_type: RentalType = Field(validation_alias="rentalType")
    status: RentalStatus = RentalStatus.CONFIRMED

    class Config:
        populate_by_name = True


# HTTP request and response shapes

class WindowRequest(BaseModel):
    start_at: datetime = Field(validation_alias="startAt")
    end_at: datetime = Field(validation_alias="endAt")

    class Config:
        populate_by_name = True


class ValidationRequest(WindowRequest):
    vehicle_id: int = Field(validation_alias="vehicleId")
    exclude_rental_id: Optional[int] = Field(default=None, validation_alias="excludeRentalId")


class PickupRequest(BaseModel):
    start_odometer: Optional[Decimal] = Field(default=None, validation_alias="startOdometer")

    class Config:
        populate_by_name = True


class CheckoutRequest(BaseModel):
    ending_odometer: Decimal = Field(validation_alias="endingOdometer")

    class Config:
        populate_by_name = True


class BasePriceUpdate(BaseModel):
    unit_price: Decimal = Field(validation_alias="unitPrice", ge=0)

    class Config:
        populate_by_name = True


class RentalResponse(BaseModel):
    id: int
    vehicle_id: int = Field(validation_alias="vehicleId", serialization_alias="vehicleId")
    customer_id: Optional[int] = Field(default=None, validation_alias="customerId", serialization_alias="customerId")
    customer_name: str = Field(validation_alias="customerName", serialization_alias="customerName")
    organization_id: Optional[str] = Field(default=None, validation_alias="organizationId", serialization_alias="organizationId")
    start_at: datetime = Field(validation_alias="startAt", serialization_alias="startAt")
    end_at: datetime = Field(validation_alias="endAt", serialization_alias="endAt")
    rental_type: RentalType = Field(validation_alias="rentalType", serialization_alias="rentalType")
    status: RentalStatus
    package_id: Optional[int] = Field(default=None, validation_alias="packageId", serialization_alias="packageId")
    included_distance: Decimal = Field(validation_alias="includedDistance", serialization_alias="includedDistance")
    extra_distance_rate: Decimal = Field(validation_alias="extraDistanceRate", serialization_alias="extraDistanceRate")
    start_odometer: Optional[Decimal] = Field(default=None, validation_alias="startOdometer", serialization_alias="startOdometer")
    ending_odometer: Optional[Decimal] = Field(default=None, validation_alias="endingOdometer", serialization_alias="endingOdometer")
    total_kilometers_driven: Optional[Decimal] = Field(
        default=None, validation_alias="totalKilometersDriven", serialization_alias="totalKilometersDriven"
    )
    has_overage: bool = Field(validation_alias="hasOverage", serialization_alias="hasOverage")
    unit_price: Optional[Decimal] = Field(default=None, validation_alias="unitPrice", serialization_alias="unitPrice")
    overage_charge: Decimal = Field(validation_alias="overageCharge", serialization_alias="overageCharge")
    total_amount: Optional[Decimal] = Field(default=None, validation_alias="totalAmount", serialization_alias="totalAmount")

    class Config:
        from_attributes = True
        populate_by_name = True


class CheckoutResponse(BaseModel):
    rental: RentalResponse
    total_distance: Decimal = Field(validation_alias="totalDistance", serialization_alias="totalDistance")
    overage_charge: Decimal = Field(validation_alias="overageCharge", serialization_alias="overageCharge")
    unit_price: Decimal = Field(validation_alias="unitPrice", serialization_alias="unitPrice")
    pricing_fallback: bool = Field(validation_alias="pricingFallback", serialization_alias="pricingFallback")

    class Config:
        from_attributes = True
        populate_by_name = True


class VehicleAvailabilityResponse(BaseModel):
    vehicle_id: int = Field(validation_alias="vehicleId", serialization_alias="vehicleId")
    state: AvailabilityState
    next_reservation_start: Optional[datetime] = Field(
        default=None, validation_alias="nextReservationStart", serialization_alias="nextReservationStart"
    )

    class Config:
        from_attributes = True
        populate_by_name = True


class VehicleResponse(BaseModel):
    vehicle_id: int = Field(validation_alias="vehicleId", serialization_alias="vehicleId")
    name: str
    plate_number: Optional[str] = Field(default=None, validation_alias="plateNumber", serialization_alias="plateNumber")
    base_status: VehicleStatus = Field(validation_alias="baseStatus", serialization_alias="baseStatus")
    current_status: AvailabilityState = Field(validation_alias="currentStatus", serialization_alias="currentStatus")
    next_reservation_start: Optional[datetime] = Field(
        default=None, validation_alias="nextReservationStart", serialization_alias="nextReservationStart"
    )

    class Config:
        populate_by_name = True


class BasePriceResponse(BaseModel):
    id: int
    model_id: int = Field(validation_alias="modelId", serialization_alias="modelId")
    rental_type: RentalType = Field(validation_alias="rentalType", serialization_alias="rentalType")
    unit_price: Decimal = Field(validation_alias="unitPrice", serialization_alias="unitPrice")
    is_active: bool = Field(validation_alias="isActive", serialization_alias="isActive")

    class Config:
        from_attributes = True
        populate_by_name = True


class ConflictResponse(BaseModel):
    message: str
    conflicting_rental_id: Optional[int] = Field(default=None, validation_alias="conflictingRentalId", serialization_alias="conflictingRentalId")
    customer_name: Optional[str] = Field(default=None, validation_alias="customerName", serialization_alias="customerName")
    start_at: Optional[datetime] = Field(default=None, validation_alias="startAt", serialization_alias="startAt")
    end_at: Optional[datetime] = Field(default=None, validation_alias="endAt", serialization_alias="endAt")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    message: str
