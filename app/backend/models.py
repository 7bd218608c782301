from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeckStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]

    def can_transition_to(self, target: "DeckStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


# analyzing -> analyzing is allowed: the pipeline re-asserts the upload's status.
_ALLOWED_TRANSITIONS: Dict[DeckStatus, FrozenSet[DeckStatus]] = {
    DeckStatus.PENDING: frozenset({DeckStatus.ANALYZING, DeckStatus.FAILED}),
    DeckStatus.ANALYZING: frozenset({DeckStatus.ANALYZING, DeckStatus.COMPLETE, DeckStatus.FAILED}),
    DeckStatus.COMPLETE: frozenset(),
    DeckStatus.FAILED: frozenset(),
}


def statuses_that_can_reach(target: DeckStatus) -> List[DeckStatus]:
    return [status for status in DeckStatus if status.can_transition_to(target)]


class AssumptionCategory(str, Enum):
    MARKET = "Market"
    CUSTOMER = "Customer"
    PRODUCT = "Product"
    COMPETITION = "Competition"
    FINANCIAL = "Financial"
    EXECUTION = "Execution"


class RiskLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


DEFAULT_SOURCE_SLIDE = "General"


@dataclass
class DeckRecord:
    id: int
    name: str
    file_name: str
    status: DeckStatus
    created_at: datetime
    slide_count: Optional[int] = None


@dataclass
class NewAssumption:
    deck_id: int
    text: str
    category: AssumptionCategory
    risk_level: RiskLevel
    stress_question: str
    reasoning: str
    source_slide: str = DEFAULT_SOURCE_SLIDE


@dataclass
class AssumptionRecord:
    id: int
    deck_id: int
    text: str
    category: AssumptionCategory
    risk_level: RiskLevel
    source_slide: str
    stress_question: str
    reasoning: str
    created_at: datetime = field(default_factory=utc_now)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DeckResponse(ApiModel):
    id: int
    name: str
    file_name: str
    status: DeckStatus
    slide_count: Optional[int] = None
    created_at: datetime


class AssumptionResponse(ApiModel):
    id: int
    deck_id: int
    text: str
    category: AssumptionCategory
    risk_level: RiskLevel
    source_slide: str
    stress_question: str
    reasoning: str
    created_at: datetime


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    storage: str
