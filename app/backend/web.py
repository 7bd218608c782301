import logging
import os
import threading
from pathlib import Path
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analysis import DeckAnalyzer
from .assumption_extractor import AssumptionExtractionClient
from .constants import CHUNK_SIZE, MAX_REQUEST_BYTES, MAX_UPLOAD_BYTES
from .deck_extractor import derive_deck_name, extract_pdf_text, validate_pdf_upload
from .errors import UploadRejected
from .llm_client import OpenAIChatClient
from .models import (
    AssumptionResponse,
    DeckResponse,
    DeckStatus,
    ErrorResponse,
    HealthResponse,
)
from .storage import DeckStore, build_deck_store


logger = logging.getLogger("uvicorn.error")

UPLOAD_PATH = "/api/decks/upload"
Spawn = Callable[..., None]


def _fire_and_forget(fn, *args, **kwargs):
    """Run *fn* in a daemon thread so the upload response is not held open
    while the analysis runs."""
    t = threading.Thread(target=fn, args=args, kwargs=kwargs, daemon=True)
    t.start()


def build_default_analyzer(store: DeckStore) -> DeckAnalyzer:
    extractor = AssumptionExtractionClient(OpenAIChatClient())
    return DeckAnalyzer(store, extractor)


def run_deck_analysis(analyzer: DeckAnalyzer, deck_id: int, deck_text: str) -> None:
    try:
        status = analyzer.analyze(deck_id, deck_text)
        logger.info("deck_id=%s background_analysis_finished status=%s", deck_id, status.value)
    except Exception:
        logger.exception("deck_id=%s background_analysis_crashed", deck_id)


async def read_upload_bytes(upload: UploadFile, *, max_size_bytes: int = MAX_UPLOAD_BYTES) -> bytes:
    chunks: List[bytes] = []
    total_bytes = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        total_bytes += len(chunk)
        if total_bytes > max_size_bytes:
            raise HTTPException(
                status_code=400,
                detail=f"Deck is too large. Max size is {max_size_bytes} bytes.",
            )
        chunks.append(chunk)

    await upload.close()
    if total_bytes == 0:
        raise HTTPException(status_code=400, detail="Deck file is empty.")
    return b"".join(chunks)


def get_store(request: Request) -> DeckStore:
    return request.app.state.deck_store


def get_analyzer(request: Request) -> DeckAnalyzer:
    return request.app.state.analyzer


def get_spawn(request: Request) -> Spawn:
    return request.app.state.spawn


def _describe_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request."


def create_app(
    *,
    store: Optional[DeckStore] = None,
    analyzer: Optional[DeckAnalyzer] = None,
    spawn: Optional[Spawn] = None,
    serve_frontend: bool = True,
) -> FastAPI:
    app = FastAPI(title="Deck Assumption Analyzer")
    app.state.deck_store = store if store is not None else build_deck_store()
    app.state.analyzer = analyzer if analyzer is not None else build_default_analyzer(app.state.deck_store)
    app.state.spawn = spawn or _fire_and_forget

    frontend_origins = os.getenv(
        "FRONTEND_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def enforce_upload_size(request: Request, call_next):
        if request.method == "POST" and request.url.path == UPLOAD_PATH:
            content_length = request.headers.get("content-length")
            if content_length:
                try:
                    if int(content_length) > MAX_REQUEST_BYTES:
                        return JSONResponse(
                            status_code=400,
                            content={"error": f"Upload too large. Max size is {MAX_UPLOAD_BYTES} bytes."},
                        )
                except ValueError:
                    pass
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _describe_validation_error(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})

    @app.get("/health", response_model=HealthResponse)
    def health(deck_store: DeckStore = Depends(get_store)) -> HealthResponse:
        return HealthResponse(status="ok", storage=deck_store.storage_name)

    @app.post(
        UPLOAD_PATH,
        response_model=DeckResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def upload_deck(
        deck: Optional[UploadFile] = File(None),
        deck_store: DeckStore = Depends(get_store),
        deck_analyzer: DeckAnalyzer = Depends(get_analyzer),
        spawn: Spawn = Depends(get_spawn),
    ) -> DeckResponse:
        if deck is None:
            raise HTTPException(status_code=400, detail="No PDF file provided.")

        file_name = deck.filename or "deck.pdf"
        try:
            validate_pdf_upload(deck.content_type)
            data = await read_upload_bytes(deck)
            extraction = await run_in_threadpool(extract_pdf_text, data)
        except UploadRejected as exc:
            logger.info("deck_upload_rejected file=%s reason=%s", file_name, exc)
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info(
            "pdf_text_extracted file=%s chars=%s pages=%s",
            file_name,
            len(extraction.text),
            extraction.page_count,
        )

        try:
            record = deck_store.create_deck(
                name=derive_deck_name(file_name),
                file_name=file_name,
                status=DeckStatus.ANALYZING,
            )
        except Exception as exc:
            logger.exception("deck_create_failed file=%s", file_name)
            raise HTTPException(status_code=500, detail="Failed to process upload.") from exc

        logger.info("deck_id=%s deck_uploaded file=%s", record.id, file_name)
        spawn(run_deck_analysis, deck_analyzer, record.id, extraction.text)
        return DeckResponse.model_validate(record)

    @app.get("/api/decks", response_model=List[DeckResponse])
    def list_decks(deck_store: DeckStore = Depends(get_store)) -> List[DeckResponse]:
        try:
            decks = deck_store.list_decks()
        except Exception as exc:
            logger.exception("deck_list_failed")
            raise HTTPException(status_code=500, detail="Failed to fetch decks.") from exc
        return [DeckResponse.model_validate(deck) for deck in decks]

    @app.get(
        "/api/decks/{deck_id}",
        response_model=DeckResponse,
        responses={404: {"model": ErrorResponse}},
    )
    def get_deck(deck_id: int, deck_store: DeckStore = Depends(get_store)) -> DeckResponse:
        try:
            deck = deck_store.get_deck(deck_id)
        except Exception as exc:
            logger.exception("deck_id=%s deck_fetch_failed", deck_id)
            raise HTTPException(status_code=500, detail="Failed to fetch deck.") from exc
        if deck is None:
            raise HTTPException(status_code=404, detail="Deck not found.")
        return DeckResponse.model_validate(deck)

    @app.get("/api/decks/{deck_id}/assumptions", response_model=List[AssumptionResponse])
    def get_deck_assumptions(deck_id: int, deck_store: DeckStore = Depends(get_store)) -> List[AssumptionResponse]:
        try:
            assumptions = deck_store.get_assumptions_by_deck(deck_id)
        except Exception as exc:
            logger.exception("deck_id=%s assumptions_fetch_failed", deck_id)
            raise HTTPException(status_code=500, detail="Failed to fetch assumptions.") from exc
        return [AssumptionResponse.model_validate(item) for item in assumptions]

    @app.delete("/api/decks/{deck_id}", status_code=204)
    def delete_deck(deck_id: int, deck_store: DeckStore = Depends(get_store)) -> Response:
        try:
            deck_store.delete_deck(deck_id)
        except Exception as exc:
            logger.exception("deck_id=%s deck_delete_failed", deck_id)
            raise HTTPException(status_code=500, detail="Failed to delete deck.") from exc
        logger.info("deck_id=%s deck_deleted", deck_id)
        return Response(status_code=204)

    frontend_dir = Path(__file__).resolve().parents[1] / "frontend"
    if serve_frontend and frontend_dir.exists():
        app.mount("/", StaticFiles(directory=str(frontend_dir), html=True), name="frontend")

    return app


app = create_app()
