from typing import Optional


class DeckAnalysisError(Exception):
    """Base class for every error raised by the deck analysis backend."""


class UploadRejected(DeckAnalysisError, ValueError):
    """The uploaded file cannot become a deck. Surfaced to the caller as HTTP 400."""


class InvalidDocument(UploadRejected):
    pass


class InsufficientContent(UploadRejected):
    pass


class PipelineError(DeckAnalysisError, RuntimeError):
    """Raised inside the background analysis. Never reaches an HTTP response;
    the deck is marked failed instead."""


class ExtractionUnavailable(PipelineError):
    pass


class EmptyModelResponse(PipelineError):
    pass


class MalformedModelResponse(PipelineError):
    def __init__(self, message: str, content: Optional[str] = None) -> None:
        super().__init__(message)
        self.content = content


class NoAssumptionsExtracted(PipelineError):
    pass


class InvalidStatusTransition(DeckAnalysisError, ValueError):
    pass
