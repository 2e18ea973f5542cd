from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tts_checkout.schemas.enums import ServiceType
from tts_checkout.schemas.quote import Location, QuoteSnapshot, ReturnJourneyQuote

WHEELCHAIR_CLAUSE = "Wheelchair access required"
PETS_CLAUSE = "Travelling with pets"

_RETURN_SERVICE_TYPES = {
    ServiceType.AIRPORT_PICKUP: ServiceType.AIRPORT_DROPOFF,
    ServiceType.AIRPORT_DROPOFF: ServiceType.AIRPORT_PICKUP,
}


def build_special_requirements(snapshot: QuoteSnapshot) -> str:
    clauses: list[str] = []
    if snapshot.wheelchair_access:
        clauses.append(WHEELCHAIR_CLAUSE)
    if snapshot.pets:
        clauses.append(PETS_CLAUSE)
    notes = (snapshot.special_notes or "").strip()
    if notes:
        clauses.append(notes)
    return "; ".join(clauses)


def flip_service_type(service_type: ServiceType) -> ServiceType:
    return _RETURN_SERVICE_TYPES.get(service_type, service_type)


def format_datetime(value: datetime) -> str:
    # Naive datetimes coming out of the quote flow are already UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_outbound_leg(snapshot: QuoteSnapshot) -> dict[str, Any]:
    price = snapshot.total_price
    if isinstance(snapshot.quote, ReturnJourneyQuote):
        price = snapshot.quote.outbound.total_price
    return _build_leg(
        snapshot,
        pickup=snapshot.pickup,
        dropoff=snapshot.dropoff,
        pickup_datetime=snapshot.pickup_datetime,
        service_type=snapshot.service_type,
        flight_number=snapshot.flight_number,
        meet_and_greet=snapshot.meet_and_greet,
        stops=[_stop_payload(stop) for stop in snapshot.stops],
        price=price,
    )


def build_return_leg(snapshot: QuoteSnapshot) -> dict[str, Any]:
    """Mirror the outbound leg for the way back.

    Pickup and dropoff swap, the trip starts at `return_datetime` and airport
    service types flip direction. Flight number, meet-and-greet and
    intermediate stops belong to the outbound leg only.
    """
    if not isinstance(snapshot.quote, ReturnJourneyQuote) or snapshot.return_datetime is None:
        raise ValueError("Return leg requires a return journey snapshot")
    return _build_leg(
        snapshot,
        pickup=snapshot.dropoff,
        dropoff=snapshot.pickup,
        pickup_datetime=snapshot.return_datetime,
        service_type=flip_service_type(snapshot.service_type),
        flight_number=None,
        meet_and_greet=False,
        stops=[],
        price=snapshot.quote.return_journey.total_price,
    )


def build_booking_payload(snapshot: QuoteSnapshot) -> dict[str, Any]:
    if not snapshot.is_return:
        payload = build_outbound_leg(snapshot)
        payload["isReturnJourney"] = False
        return payload
    return {
        "isReturnJourney": True,
        "outbound": build_outbound_leg(snapshot),
        "returnJourney": build_return_leg(snapshot),
        "totalPrice": snapshot.total_price,
        "discountAmount": snapshot.quote.discount_amount,
    }


def _build_leg(
    snapshot: QuoteSnapshot,
    *,
    pickup: Location,
    dropoff: Location,
    pickup_datetime: datetime,
    service_type: ServiceType,
    flight_number: str | None,
    meet_and_greet: bool,
    stops: list[dict[str, Any]],
    price: float,
) -> dict[str, Any]:
    customer = snapshot.customer_details
    leg: dict[str, Any] = {
        "pickupAddress": pickup.address,
        "pickupPostcode": pickup.postcode or "",
        "pickupLat": pickup.lat,
        "pickupLng": pickup.lng,
        "dropoffAddress": dropoff.address,
        "dropoffPostcode": dropoff.postcode or "",
        "dropoffLat": dropoff.lat,
        "dropoffLng": dropoff.lng,
        "pickupDatetime": format_datetime(pickup_datetime),
        "passengerCount": snapshot.passengers,
        "luggageCount": snapshot.luggage,
        "vehicleType": snapshot.vehicle_type.value,
        "serviceType": service_type.value,
        "childSeats": snapshot.child_seats,
        "boosterSeats": snapshot.booster_seats,
        "hasMeetAndGreet": meet_and_greet,
        "stops": stops,
        "customerName": customer.full_name,
        "customerEmail": customer.email,
        "customerPhone": customer.phone,
        "customerPrice": price,
    }
    if flight_number:
        leg["flightNumber"] = flight_number
    special_requirements = build_special_requirements(snapshot)
    if special_requirements:
        leg["specialRequirements"] = special_requirements
    return leg


def _stop_payload(stop: Location) -> dict[str, Any]:
    return {
        "address": stop.address,
        "postcode": stop.postcode or "",
        "lat": stop.lat,
        "lng": stop.lng,
    }
