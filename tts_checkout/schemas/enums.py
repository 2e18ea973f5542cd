import enum


class ServiceType(enum.StrEnum):
    AIRPORT_PICKUP = "AIRPORT_PICKUP"
    AIRPORT_DROPOFF = "AIRPORT_DROPOFF"
    POINT_TO_POINT = "POINT_TO_POINT"


class VehicleType(enum.StrEnum):
    SALOON = "SALOON"
    ESTATE = "ESTATE"
    MPV = "MPV"
    EXECUTIVE = "EXECUTIVE"
    MINIBUS = "MINIBUS"


class BookingStatus(enum.StrEnum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
