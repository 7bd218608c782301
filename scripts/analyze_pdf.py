#!/usr/bin/env python3
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.backend.analysis import DeckAnalyzer
from app.backend.assumption_extractor import AssumptionExtractionClient
from app.backend.deck_extractor import derive_deck_name, extract_pdf_text
from app.backend.llm_client import OpenAIChatClient
from app.backend.storage import InMemoryDeckStore


def main() -> None:
    if len(sys.argv) != 2:
        raise SystemExit("usage: analyze_pdf.py path/to/deck.pdf")

    logging.basicConfig(level=logging.INFO)
    pdf_path = Path(sys.argv[1])
    extraction = extract_pdf_text(pdf_path.read_bytes())
    print(f"Extracted {len(extraction.text)} chars from {extraction.page_count} pages.", file=sys.stderr)

    store = InMemoryDeckStore()
    deck = store.create_deck(name=derive_deck_name(pdf_path.name), file_name=pdf_path.name)
    analyzer = DeckAnalyzer(store, AssumptionExtractionClient(OpenAIChatClient()))
    status = analyzer.analyze(deck.id, extraction.text)

    final = store.get_deck(deck.id)
    report = {
        "deck": asdict(final),
        "assumptions": [asdict(item) for item in store.get_assumptions_by_deck(deck.id)],
    }
    print(json.dumps(report, indent=2, default=str))
    if status.value != "complete":
        raise SystemExit(1)


if __name__ == "__main__":
    main()
