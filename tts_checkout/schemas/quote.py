from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, model_validator
from pydantic.alias_generators import to_camel

from tts_checkout.schemas.enums import ServiceType, VehicleType


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Location(_CamelModel):
    address: str
    postcode: str | None = None
    lat: float
    lng: float


class StopPoint(Location):
    pass


class CustomerDetails(_CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class SingleJourneyQuote(_CamelModel):
    total_price: float = Field(gt=0)
    base_fare: float | None = None
    distance_charge: float | None = None
    time_surcharge: float | None = None
    holiday_surcharge: float | None = None
    meet_and_greet_fee: float | None = None
    breakdown: dict[str, Any] | None = None


class ReturnJourneyQuote(_CamelModel):
    outbound: SingleJourneyQuote
    return_journey: SingleJourneyQuote
    subtotal: float | None = None
    discount_percent: float | None = None
    discount_amount: float = 0.0
    total_price: float = Field(gt=0)


def _quote_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "return" if "outbound" in value else "single"
    return "return" if isinstance(value, ReturnJourneyQuote) else "single"


JourneyQuote = Annotated[
    Union[
        Annotated[ReturnJourneyQuote, Tag("return")],
        Annotated[SingleJourneyQuote, Tag("single")],
    ],
    Discriminator(_quote_kind),
]


class QuoteSnapshot(_CamelModel):
    """Priced journey captured by the quote flow and consumed once by checkout."""

    journey_type: Literal["one-way", "return"]
    pickup: Location
    dropoff: Location
    stops: list[StopPoint] = Field(default_factory=list)
    service_type: ServiceType
    pickup_datetime: datetime
    return_datetime: datetime | None = None
    flight_number: str | None = None
    passengers: int = Field(ge=1)
    luggage: int = Field(default=0, ge=0)
    vehicle_type: VehicleType
    child_seats: int = Field(default=0, ge=0)
    booster_seats: int = Field(default=0, ge=0)
    wheelchair_access: bool = False
    pets: bool = False
    meet_and_greet: bool = False
    special_notes: str | None = None
    customer_details: CustomerDetails
    quote: JourneyQuote

    @model_validator(mode="after")
    def _check_journey_shape(self) -> QuoteSnapshot:
        if self.journey_type == "return":
            if not isinstance(self.quote, ReturnJourneyQuote):
                raise ValueError("return journey requires a return quote")
            if self.return_datetime is None:
                raise ValueError("return journey requires returnDatetime")
        elif isinstance(self.quote, ReturnJourneyQuote):
            raise ValueError("one-way journey cannot carry a return quote")
        return self

    @property
    def is_return(self) -> bool:
        return self.journey_type == "return"

    @property
    def total_price(self) -> float:
        # Return quotes already carry the combined discounted total.
        return self.quote.total_price
