"""Request schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, field_validator, model_validator


def _check_hhmm(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        datetime.strptime(v, "%H:%M")
    except ValueError:
        raise ValueError("time must be HH:MM")
    return v


def _check_iso_date(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        date.fromisoformat(v[:10])
    except ValueError:
        raise ValueError("date must be YYYY-MM-DD")
    return v


HHMM = Annotated[str, AfterValidator(_check_hhmm)]
IsoDate = Annotated[str, AfterValidator(_check_iso_date)]


# =============================================================================
# ADMIN PRICING
# =============================================================================
class SeasonIn(BaseModel):
    id: str
    courseId: str
    name: str
    startDate: IsoDate
    endDate: IsoDate
    priority: float
    active: bool
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class TimeBandIn(BaseModel):
    id: str
    courseId: str
    label: str
    startTime: HHMM
    endTime: HHMM
    active: bool
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class PriceRuleIn(BaseModel):
    id: str
    courseId: str
    name: str
    description: Optional[str] = None
    seasonId: Optional[str] = None
    timeBandId: Optional[str] = None
    dow: Optional[List[int]] = None
    leadTimeMin: Optional[float] = None
    leadTimeMax: Optional[float] = None
    occupancyMin: Optional[float] = None
    occupancyMax: Optional[float] = None
    playersMin: Optional[int] = None
    playersMax: Optional[int] = None
    priceType: Literal["fixed", "delta", "multiplier"]
    priceValue: float
    priority: float
    active: bool
    effectiveFrom: Optional[str] = None
    effectiveTo: Optional[str] = None
    minPrice: Optional[float] = None
    maxPrice: Optional[float] = None
    roundTo: Optional[float] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None

    @field_validator("dow")
    @classmethod
    def validate_dow(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("dow entries must be 0 (Sunday) to 6 (Saturday)")
        return v


class SpecialOverrideIn(BaseModel):
    id: str
    courseId: str
    name: str
    description: Optional[str] = None
    startDate: IsoDate
    endDate: IsoDate
    startTime: Optional[HHMM] = None
    endTime: Optional[HHMM] = None
    overrideType: Literal["price", "block"]
    priceValue: Optional[float] = None
    priority: float
    active: bool
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class BaseProductIn(BaseModel):
    id: str = "default"
    courseId: str
    name: str
    description: Optional[str] = None
    basePrice: float
    currency: str = "USD"
    active: bool
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None

    @field_validator("basePrice")
    @classmethod
    def validate_base_price(cls, v: float) -> float:
        if v < 0:
            raise ValueError("basePrice must not be negative")
        return v


class SavePricingRequest(BaseModel):
    """Full pricing snapshot for one course.

    A collection left out (None) is untouched; an empty list clears it.
    """

    courseId: str
    seasons: Optional[List[SeasonIn]] = None
    timeBands: Optional[List[TimeBandIn]] = None
    priceRules: Optional[List[PriceRuleIn]] = None
    specialOverrides: Optional[List[SpecialOverrideIn]] = None
    baseProduct: Optional[BaseProductIn] = None


class DedupeRequest(BaseModel):
    courseId: str
    type: Literal["timeBands", "priceRules", "priceRulesByName", "all"] = "all"
    strategy: Literal["highest_priority", "latest"] = "highest_priority"


# =============================================================================
# CHECKOUT / BOOKINGS
# =============================================================================
class QuoteRequest(BaseModel):
    courseId: str
    date: IsoDate
    time: HHMM
    players: int
    holes: int
    basePrice: Optional[float] = None  # client fallback when pricing is unavailable
    promoCode: Optional[str] = None
    userId: Optional[str] = None
    userEmail: Optional[str] = None

    @field_validator("players", "holes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class BookingRequest(BaseModel):
    courseId: str
    teeTime: Optional[str] = None  # ISO datetime; date/time are derived from it when absent
    date: Optional[str] = None
    time: Optional[str] = None
    playerCount: int = 1
    pricePublicUSD: Optional[float] = None
    currency: str = "USD"
    channel: Literal["direct", "concierge", "ota"] = "direct"
    conciergeId: Optional[str] = None

    @model_validator(mode="after")
    def fill_date_time(self):
        if self.teeTime:
            if not self.date:
                self.date = self.teeTime[:10]
            if not self.time:
                self.time = self.teeTime[11:16]
        if not self.date or not self.time:
            raise ValueError("teeTime or date and time are required")
        _check_iso_date(self.date)
        _check_hhmm(self.time)
        if not self.teeTime:
            self.teeTime = f"{self.date}T{self.time}:00"
        return self

    @field_validator("playerCount")
    @classmethod
    def validate_players(cls, v: int) -> int:
        if v < 1 or v > 4:
            raise ValueError("playerCount must be between 1 and 4")
        return v
