from typing import Iterable, List, Sequence

import httpx
from openai import APIConnectionError

from app.backend.llm_client import ChatCompletionResult


def _escape_pdf_text(line: str) -> str:
    return line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")

def build_pdf(pages: Sequence[Sequence[str]]) -> bytes:
    """Build a minimal PDF with one Helvetica text line per entry.

    A page with no lines has an empty content stream, like a scanned deck.
    """
    page_count = len(pages)
    kids = " ".join(f"{4 + 2 * index} 0 R" for index in range(page_count))
    bodies: List[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for index, lines in enumerate(pages):
        content_num = 5 + 2 * index
        bodies.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_num} 0 R >>"
            ).encode()
        )
        stream = "".join(
            f"BT /F1 10 Tf 40 {750 - 14 * row} Td ({_escape_pdf_text(line)}) Tj ET\n"
            for row, line in enumerate(lines)
        ).encode("latin-1")
        bodies.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    output = bytearray(b"%PDF-1.4\n")
    offsets: List[int] = []
    for number, body in enumerate(bodies, start=1):
        offsets.append(len(output))
        output += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_position = len(output)
    output += f"xref\n0 {len(bodies) + 1}\n".encode()
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += f"{offset:010d} 00000 n \n".encode()
    output += (
        f"trailer\n<< /Size {len(bodies) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_position}\n%%EOF\n"
    ).encode()
    return bytes(output)

def make_records(count: int) -> List[dict]:
    categories = ["Market", "Customer", "Product", "Competition", "Financial", "Execution"]
    risks = ["High", "Medium", "Low"]
    return [
        {
            "text": f"Assumption number {index + 1} holds.",
            "category": categories[index % len(categories)],
            "riskLevel": risks[index % len(risks)],
            "sourceSlide": f"Slide {index + 1}",
            "stressQuestion": f"What evidence backs assumption {index + 1}?",
            "reasoning": "Stated without supporting data.",
        }
        for index in range(count)
    ]

def connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://llm.example.test/v1/chat/completions"))

class FakeCompletionClient:
    """Replays scripted results; exceptions in the script are raised."""

    def __init__(self, script: Iterable[object]) -> None:
        self._script = list(script)
        self.calls: List[dict] = []

    def complete(self, *, system_prompt: str, user_prompt: str, max_tokens: int, json_mode: bool = True):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            return ChatCompletionResult(content=item, finish_reason="stop")
        return item

class ScriptedExtractor:
    def __init__(self, *results: object) -> None:
        self._results = list(results)
        self.calls: List[int] = []

    def extract(self, deck_text: str, deck_id: int):
        self.calls.append(deck_id)
        result = self._results.pop(0) if self._results else []
        if isinstance(result, BaseException):
            raise result
        return result

class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

