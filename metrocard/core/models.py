"""
metrocard/core/models.py
------------------------
Persisted card/user shapes and the result types the ledger hands back.
Field names match the stored JSON (camelCase).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

INITIAL_A_GRANT = 10
MONTHLY_B_GRANT = 5
MAX_NAME_LENGTH = 20
MAX_BATCH_SIZE = 10

STATUS_IDLE = "idle"
STATUS_IN_STATION = "in_station"
LEGACY_STATUS_USED_TODAY = "used_today"
STATUSES = (STATUS_IDLE, STATUS_IN_STATION)

COUPON_A = "A"
COUPON_B = "B"

# Failure reasons surfaced to the transport
NOT_FOUND = "not_found"
ALREADY_USED_TODAY = "already_used_today"
EXHAUSTED = "exhausted"
INVALID_TYPE = "invalid_type"
DUPLICATE_NAME = "duplicate_name"
NAME_TOO_LONG = "name_too_long"
EMPTY_NAME = "empty_name"
BATCH_LIMIT_EXCEEDED = "batch_limit_exceeded"
EMPTY_INPUT = "empty_input"


class CouponBatch(BaseModel):
    monthKey: str
    count: int = MONTHLY_B_GRANT


class Coupons(BaseModel):
    A: int = INITIAL_A_GRANT
    B: List[CouponBatch] = Field(default_factory=list)

    def total_b(self) -> int:
        return sum(b.count for b in self.B)


class DailyUsage(BaseModel):
    A: bool = False
    B: bool = False
    date: str = ""


class Card(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    coupons: Coupons = Field(default_factory=Coupons)
    dailyUsage: DailyUsage = Field(default_factory=DailyUsage)
    status: str = STATUS_IDLE
    checkInTime: Optional[str] = None
    reminderSent: bool = False
    lastUsed: Optional[str] = None
    createdAt: Optional[str] = None


class UserData(BaseModel):
    model_config = ConfigDict(extra="allow")

    cards: List[Card] = Field(default_factory=list)
    currentMonth: int
    currentYear: int

    def find(self, card_id: str) -> Optional[Card]:
        for card in self.cards:
            if card.id == card_id:
                return card
        return None


Database = Dict[str, UserData]
DATABASE_ADAPTER: TypeAdapter[Database] = TypeAdapter(Database)


@dataclass
class ConsumeResult:
    success: bool
    message: str
    reason: Optional[str] = None
    coupon_type: Optional[str] = None
    remaining: Optional[int] = None
    batch: Optional[str] = None


@dataclass
class BatchAddResult:
    added: List[str] = field(default_factory=list)
    failed: List[tuple[str, str]] = field(default_factory=list)  # (name, reason)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UserCards:
    user_id: str
    cards: List[Card]
