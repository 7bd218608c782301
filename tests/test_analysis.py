import pytest

from app.backend.analysis import DeckAnalyzer, estimate_slide_count, sanitize_assumption
from app.backend.errors import ExtractionUnavailable
from app.backend.models import AssumptionCategory, DeckStatus, RiskLevel
from app.backend.storage import InMemoryDeckStore
from helpers import ScriptedExtractor, make_records

VALID_CATEGORIES = {member.value for member in AssumptionCategory}
VALID_RISKS = {member.value for member in RiskLevel}


def _deck(store, status=DeckStatus.ANALYZING):
    return store.create_deck(name="deck", file_name="deck.pdf", status=status)


def _plain_text(length: int) -> str:
    words = ("robots help retailers ship orders faster " * (length // 10 + 1))
    return words[:length]


def test_scenario_twelve_records_on_plain_text(store, sleeper):
    deck = _deck(store)
    text = _plain_text(1200)
    analyzer = DeckAnalyzer(store, ScriptedExtractor(make_records(12)), sleep=sleeper)

    assert analyzer.analyze(deck.id, text) is DeckStatus.COMPLETE

    final = store.get_deck(deck.id)
    assert final.status is DeckStatus.COMPLETE
    assert final.slide_count == 3
    assumptions = store.get_assumptions_by_deck(deck.id)
    assert len(assumptions) == 12
    assert {item.deck_id for item in assumptions} == {deck.id}
    assert sleeper.delays == []


def test_invalid_enum_values_are_coerced(store, sleeper):
    deck = _deck(store)
    raw = [
        {"text": "Big market", "category": "Marketing", "riskLevel": "Critical", "stressQuestion": "?", "reasoning": "r"},
        {"text": "Users churn", "category": "customer", "riskLevel": " high ", "sourceSlide": "", "stressQuestion": "?"},
        {"text": "We ship fast", "category": None, "riskLevel": 3, "sourceSlide": "Slide 4"},
    ]
    DeckAnalyzer(store, ScriptedExtractor(raw), sleep=sleeper).analyze(deck.id, _plain_text(300))

    saved = store.get_assumptions_by_deck(deck.id)
    assert [a.category for a in saved] == [
        AssumptionCategory.MARKET,
        AssumptionCategory.CUSTOMER,
        AssumptionCategory.MARKET,
    ]
    assert [a.risk_level for a in saved] == [RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.MEDIUM]
    assert [a.source_slide for a in saved] == ["General", "General", "Slide 4"]
    assert saved[2].stress_question == ""
    assert all(a.category.value in VALID_CATEGORIES for a in saved)
    assert all(a.risk_level.value in VALID_RISKS for a in saved)


def test_records_without_text_are_dropped(store, sleeper):
    deck = _deck(store)
    raw = make_records(2) + [{"category": "Market"}, "not a record", {"text": "   "}]
    DeckAnalyzer(store, ScriptedExtractor(raw), sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert len(store.get_assumptions_by_deck(deck.id)) == 2
    assert store.get_deck(deck.id).status is DeckStatus.COMPLETE


def test_only_unusable_records_fails(store, sleeper):
    deck = _deck(store)
    status = DeckAnalyzer(store, ScriptedExtractor([{"category": "Market"}]), sleep=sleeper).analyze(
        deck.id, _plain_text(300)
    )

    assert status is DeckStatus.FAILED
    assert store.get_assumptions_by_deck(deck.id) == []


def test_empty_twice_fails_without_rows(store, sleeper):
    deck = _deck(store)
    extractor = ScriptedExtractor([], [])

    status = DeckAnalyzer(store, extractor, sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert status is DeckStatus.FAILED
    assert store.get_deck(deck.id).status is DeckStatus.FAILED
    assert store.get_deck(deck.id).slide_count is None
    assert store.get_assumptions_by_deck(deck.id) == []
    assert len(extractor.calls) == 2
    assert sleeper.delays == [1.0]


def test_empty_then_records_completes(store, sleeper):
    deck = _deck(store)
    extractor = ScriptedExtractor([], make_records(4))

    status = DeckAnalyzer(store, extractor, sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert status is DeckStatus.COMPLETE
    assert len(store.get_assumptions_by_deck(deck.id)) == 4
    assert len(extractor.calls) == 2


def test_status_is_analyzing_before_extraction(store, sleeper):
    deck = _deck(store, status=DeckStatus.PENDING)
    seen = []

    class CheckingExtractor:
        def extract(self, deck_text, deck_id):
            seen.append(store.get_deck(deck_id).status)
            return make_records(1)

    DeckAnalyzer(store, CheckingExtractor(), sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert seen == [DeckStatus.ANALYZING]
    assert store.get_deck(deck.id).status is DeckStatus.COMPLETE


def test_extraction_error_marks_failed(store, sleeper):
    deck = _deck(store)
    extractor = ScriptedExtractor(ExtractionUnavailable("provider down"))

    assert DeckAnalyzer(store, extractor, sleep=sleeper).analyze(deck.id, _plain_text(300)) is DeckStatus.FAILED
    assert store.get_deck(deck.id).status is DeckStatus.FAILED


def test_persistence_error_marks_failed(sleeper):
    class BrokenStore(InMemoryDeckStore):
        def complete_analysis(self, deck_id, items, *, slide_count=None):
            raise RuntimeError("disk full")

    store = BrokenStore()
    deck = _deck(store)

    status = DeckAnalyzer(store, ScriptedExtractor(make_records(3)), sleep=sleeper).analyze(
        deck.id, _plain_text(300)
    )

    assert status is DeckStatus.FAILED
    assert store.get_deck(deck.id).status is DeckStatus.FAILED


def test_failed_completion_leaves_no_assumptions(store, sleeper):
    deck = _deck(store)

    class FailingMidwayExtractor:
        def extract(self, deck_text, deck_id):
            store.update_deck_status(deck_id, DeckStatus.FAILED)
            return make_records(12)

    status = DeckAnalyzer(store, FailingMidwayExtractor(), sleep=sleeper).analyze(deck.id, _plain_text(1200))

    assert status is DeckStatus.FAILED
    assert store.get_deck(deck.id).status is DeckStatus.FAILED
    assert store.get_deck(deck.id).slide_count is None
    assert store.get_assumptions_by_deck(deck.id) == []


def test_completion_is_a_single_store_call(sleeper):
    class CompleteUpdateFails(InMemoryDeckStore):
        def update_deck_status(self, deck_id, status, *, slide_count=None):
            if status is DeckStatus.COMPLETE:
                raise RuntimeError("connection dropped")
            return super().update_deck_status(deck_id, status, slide_count=slide_count)

    store = CompleteUpdateFails()
    deck = _deck(store)

    status = DeckAnalyzer(store, ScriptedExtractor(make_records(12)), sleep=sleeper).analyze(
        deck.id, _plain_text(1200)
    )

    assert status is DeckStatus.COMPLETE
    final = store.get_deck(deck.id)
    assert final.status is DeckStatus.COMPLETE
    assert final.slide_count == 3
    assert len(store.get_assumptions_by_deck(deck.id)) == 12


def test_deck_deleted_mid_analysis_does_not_raise(store, sleeper):
    deck = _deck(store)

    class DeletingExtractor:
        def extract(self, deck_text, deck_id):
            store.delete_deck(deck_id)
            return make_records(2)

    status = DeckAnalyzer(store, DeletingExtractor(), sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert status is DeckStatus.FAILED
    assert store.get_deck(deck.id) is None
    assert store.get_assumptions_by_deck(deck.id) == []


def test_terminal_deck_is_not_reanalyzed(store, sleeper):
    deck = _deck(store)
    store.update_deck_status(deck.id, DeckStatus.COMPLETE, slide_count=2)
    extractor = ScriptedExtractor(make_records(1))

    status = DeckAnalyzer(store, extractor, sleep=sleeper).analyze(deck.id, _plain_text(300))

    assert status is DeckStatus.FAILED
    assert extractor.calls == []
    assert store.get_deck(deck.id).status is DeckStatus.COMPLETE


@pytest.mark.parametrize(
    "text, expected",
    [
        ("x" * 1200, 3),
        ("x" * 1000, 2),
        ("short", 1),
        ("", 1),
        ("Slide 1 intro Slide 2 team Slide 3 ask Slide 4 close", 4),
        ("Cover page\nPage 1 problem\npage 2 solution", 3),
    ],
)
def test_estimate_slide_count(text, expected):
    assert estimate_slide_count(text) == expected


def test_sanitize_assumption_builds_insert():
    item = sanitize_assumption(make_records(1)[0], deck_id=9)
    assert item.deck_id == 9
    assert item.category is AssumptionCategory.MARKET
    assert item.risk_level is RiskLevel.HIGH
    assert item.source_slide == "Slide 1"
    assert sanitize_assumption(["text"], deck_id=9) is None
