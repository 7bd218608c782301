import logging
import math
import re
import time
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypeVar

from .constants import CHARS_PER_SLIDE_ESTIMATE
from .errors import NoAssumptionsExtracted
from .models import (
    DEFAULT_SOURCE_SLIDE,
    AssumptionCategory,
    DeckStatus,
    NewAssumption,
    RiskLevel,
)
from .storage import DeckStore


logger = logging.getLogger("uvicorn.error")

DEFAULT_EMPTY_RETRY_DELAY_SECONDS = 1.0
_SLIDE_MARKER_RE = re.compile(r"(?=slide\s*\d|page\s*\d)", re.IGNORECASE)

EnumT = TypeVar("EnumT", AssumptionCategory, RiskLevel)


class AssumptionExtractor(Protocol):
    def extract(self, deck_text: str, deck_id: int) -> List[Any]:
        pass


def estimate_slide_count(text: str) -> int:
    chunks = [chunk for chunk in _SLIDE_MARKER_RE.split(text or "") if chunk]
    by_length = math.ceil(len(text or "") / CHARS_PER_SLIDE_ESTIMATE)
    return max(1, len(chunks), by_length)


def _coerce_enum(value: Any, enum_cls: type, default: EnumT) -> EnumT:
    if isinstance(value, str):
        wanted = value.strip().lower()
        for member in enum_cls:
            if member.value.lower() == wanted:
                return member
    return default


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def sanitize_assumption(raw: Any, deck_id: int) -> Optional[NewAssumption]:
    """Turn one raw model record into an insertable assumption.

    Returns ``None`` for records that carry no usable claim text.
    """
    if not isinstance(raw, dict):
        return None
    text = _clean_text(raw.get("text"))
    if not text:
        return None

    return NewAssumption(
        deck_id=deck_id,
        text=text,
        category=_coerce_enum(raw.get("category"), AssumptionCategory, AssumptionCategory.MARKET),
        risk_level=_coerce_enum(raw.get("riskLevel"), RiskLevel, RiskLevel.MEDIUM),
        source_slide=_clean_text(raw.get("sourceSlide")) or DEFAULT_SOURCE_SLIDE,
        stress_question=_clean_text(raw.get("stressQuestion")),
        reasoning=_clean_text(raw.get("reasoning")),
    )


class DeckAnalyzer:
    def __init__(
        self,
        store: DeckStore,
        extractor: AssumptionExtractor,
        *,
        empty_retry_delay: float = DEFAULT_EMPTY_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._empty_retry_delay = empty_retry_delay
        self._sleep = sleep

    def _extract_with_retry(self, deck_id: int, deck_text: str) -> Sequence[Any]:
        records = self._extractor.extract(deck_text, deck_id)
        if not records:
            logger.warning("deck_id=%s empty_extraction_retry delay=%s", deck_id, self._empty_retry_delay)
            self._sleep(self._empty_retry_delay)
            records = self._extractor.extract(deck_text, deck_id)
        return records or []

    def _sanitize_all(self, deck_id: int, records: Sequence[Any]) -> List[NewAssumption]:
        sanitized: List[NewAssumption] = []
        for index, raw in enumerate(records):
            item = sanitize_assumption(raw, deck_id)
            if item is None:
                logger.warning("deck_id=%s assumption_dropped index=%s reason=missing_text", deck_id, index)
                continue
            sanitized.append(item)
        return sanitized

    def analyze(self, deck_id: int, deck_text: str) -> DeckStatus:
        """Run one deck from text to persisted assumptions and return its final status.

        Never raises: every failure ends with the deck marked ``failed``.
        """
        try:
            self._store.update_deck_status(deck_id, DeckStatus.ANALYZING)
            slide_count = estimate_slide_count(deck_text)
            logger.info(
                "deck_id=%s analysis_started text_len=%s estimated_slides=%s",
                deck_id,
                len(deck_text),
                slide_count,
            )

            records = self._extract_with_retry(deck_id, deck_text)
            if not records:
                raise NoAssumptionsExtracted(
                    "No assumptions could be extracted from this deck after multiple attempts."
                )

            items = self._sanitize_all(deck_id, records)
            if not items:
                raise NoAssumptionsExtracted("The AI response contained no usable assumptions.")

            self._store.complete_analysis(deck_id, items, slide_count=slide_count)
            logger.info("deck_id=%s analysis_complete assumptions=%s", deck_id, len(items))
            return DeckStatus.COMPLETE
        except Exception as exc:
            logger.warning("deck_id=%s analysis_failed error=%s", deck_id, exc, exc_info=True)
            try:
                self._store.update_deck_status(deck_id, DeckStatus.FAILED)
            except Exception:
                logger.warning("deck_id=%s failed_status_not_saved", deck_id, exc_info=True)
            return DeckStatus.FAILED
