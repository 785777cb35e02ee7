from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from nupbinder.constants import (
    DEFAULT_MAX_REQUESTS_PER_WINDOW,
    DEFAULT_MAX_UPLOAD_BYTES,
    DEFAULT_PAPER_SIZE,
    DEFAULT_THROTTLE_WINDOW_SECONDS,
    DEFAULT_TRUST_FORWARDED_FOR,
)
from nupbinder.imposition.pdf_writer import (
    ImpositionOptionsError,
    MalformedDocumentError,
    deterministic_output_filename,
    impose_pdf,
    is_foldable_mode,
    parse_pages_per_sheet,
)

_LOGGER = logging.getLogger("nupbinder.web")
_THROTTLED_MESSAGE = "Too many requests. Try again after 1 minute."
_DEFAULT_SOURCE_NAME = "document.pdf"
_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ConversionResult:
    payload: bytes
    output_filename: str
    output_pages: int


@dataclass(frozen=True)
class ConversionFailure:
    status_code: int
    message: str


def _log_event(level: int, event_name: str, **event_fields: Any) -> None:
    _LOGGER.log(
        level,
        event_name,
        extra={"event_name": event_name, "event_fields": event_fields},
    )


def client_key_func(trust_forwarded_for: bool = DEFAULT_TRUST_FORWARDED_FOR) -> Callable[[Request], str]:
    """Build the slowapi key function for ``/convert``.

    The first ``X-Forwarded-For`` entry keys the client only when
    ``trust_forwarded_for`` is set; otherwise the peer address does.
    """

    def _key(request: Request) -> str:
        if trust_forwarded_for:
            forwarded_for = request.headers.get("x-forwarded-for", "")
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        return get_remote_address(request)

    return _key


def throttle_limit(max_requests_per_window: int, throttle_window_seconds: int) -> str:
    return f"{max_requests_per_window}/{throttle_window_seconds} seconds"


def _upload_size_message(max_upload_bytes: int) -> str:
    if max_upload_bytes >= _BYTES_PER_MB:
        return f"File too large. Max {max_upload_bytes // _BYTES_PER_MB}MB."
    return f"File too large. Max {max_upload_bytes} bytes."


def _validate_upload_metadata(file: UploadFile | None) -> tuple[str | None, str | None]:
    if file is None:
        return None, "No file uploaded."

    source_name = Path(file.filename).name if file.filename else _DEFAULT_SOURCE_NAME
    return source_name, None


def _impose_payload(
    *,
    payload: bytes,
    source_name: str,
    pages_per_sheet: int,
    paper_size: str,
    mode: str,
    job_id: str | None = None,
) -> tuple[ConversionResult | None, ConversionFailure | None]:
    if not payload:
        _log_event(logging.WARNING, "convert.job.empty_upload", job_id=job_id, source_name=source_name)
        return None, ConversionFailure(status_code=400, message="No file uploaded.")

    try:
        document = impose_pdf(
            payload,
            pages_per_sheet=pages_per_sheet,
            paper_size=paper_size,
            mode=mode,
        )
    except ImpositionOptionsError as exc:
        _log_event(logging.WARNING, "convert.job.invalid_options", job_id=job_id, error=str(exc))
        return None, ConversionFailure(status_code=400, message=str(exc))
    except MalformedDocumentError as exc:
        _log_event(
            logging.WARNING,
            "convert.job.malformed_document",
            job_id=job_id,
            source_name=source_name,
            payload_bytes=len(payload),
            error=str(exc),
        )
        return None, ConversionFailure(
            status_code=400,
            message=f"The document could not be processed: {exc}.",
        )
    except Exception as exc:
        _LOGGER.exception(
            "convert.job.unexpected_failure",
            extra={
                "event_name": "convert.job.unexpected_failure",
                "event_fields": {"job_id": job_id, "source_name": source_name},
            },
        )
        return None, ConversionFailure(
            status_code=500,
            message=f"An error occurred while processing the document: {exc}",
        )

    output_filename = deterministic_output_filename(
        source_name,
        pages_per_sheet=pages_per_sheet,
        foldable=is_foldable_mode(mode),
    )
    _log_event(
        logging.INFO,
        "convert.job.completed",
        job_id=job_id,
        source_name=source_name,
        output_filename=output_filename,
        output_pages=document.page_count,
    )
    return ConversionResult(
        payload=document.payload,
        output_filename=output_filename,
        output_pages=document.page_count,
    ), None


def create_app(
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    max_requests_per_window: int = DEFAULT_MAX_REQUESTS_PER_WINDOW,
    throttle_window_seconds: int = DEFAULT_THROTTLE_WINDOW_SECONDS,
    trust_forwarded_for: bool = DEFAULT_TRUST_FORWARDED_FOR,
) -> FastAPI:
    app = FastAPI(title="Nupbinder", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
        allow_credentials=False,
    )

    app.state.max_upload_bytes = max_upload_bytes
    key_func = client_key_func(trust_forwarded_for)
    limiter = Limiter(key_func=key_func, strategy="moving-window")
    app.state.limiter = limiter

    async def throttled(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        _log_event(logging.WARNING, "convert.request.throttled", client=key_func(request), limit=str(exc.detail))
        return JSONResponse(status_code=429, content={"detail": _THROTTLED_MESSAGE})

    app.add_exception_handler(RateLimitExceeded, throttled)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/convert")
    @limiter.limit(throttle_limit(max_requests_per_window, throttle_window_seconds))
    async def convert(
        request: Request,
        file: UploadFile | None = File(default=None),
        pages_per_sheet: str = Form(..., alias="pagesPerSheet"),
        paper_size: str = Form(DEFAULT_PAPER_SIZE, alias="paperSize"),
        mode: str = Form("standard"),
    ) -> Response:
        job_id = uuid4().hex
        _log_event(
            logging.INFO,
            "convert.request.received",
            job_id=job_id,
            client=key_func(request),
            pages_per_sheet=pages_per_sheet,
            paper_size=paper_size,
            mode=mode,
            has_upload=file is not None,
        )

        source_name, upload_error = _validate_upload_metadata(file)
        if upload_error is not None or file is None or source_name is None:
            _log_event(logging.WARNING, "convert.request.upload_missing", job_id=job_id)
            raise HTTPException(status_code=400, detail=upload_error or "No file uploaded.")

        try:
            grid_pages = parse_pages_per_sheet(pages_per_sheet)
        except ImpositionOptionsError as exc:
            _log_event(logging.WARNING, "convert.request.invalid_options", job_id=job_id, error=str(exc))
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        payload = await file.read(app.state.max_upload_bytes + 1)
        if len(payload) > app.state.max_upload_bytes:
            _log_event(logging.WARNING, "convert.request.too_large", job_id=job_id, source_name=source_name)
            raise HTTPException(status_code=413, detail=_upload_size_message(app.state.max_upload_bytes))

        result, failure = await run_in_threadpool(
            _impose_payload,
            payload=payload,
            source_name=source_name,
            pages_per_sheet=grid_pages,
            paper_size=paper_size,
            mode=mode,
            job_id=job_id,
        )
        if failure is not None:
            _log_event(
                logging.WARNING,
                "convert.request.failed",
                job_id=job_id,
                source_name=source_name,
                status_code=failure.status_code,
                error=failure.message,
            )
            raise HTTPException(status_code=failure.status_code, detail=failure.message)

        if result is None:
            _log_event(logging.ERROR, "convert.request.missing_result", job_id=job_id, source_name=source_name)
            raise HTTPException(status_code=500, detail="Imposition failed.")

        _log_event(
            logging.INFO,
            "convert.request.succeeded",
            job_id=job_id,
            source_name=source_name,
            output_filename=result.output_filename,
            output_pages=result.output_pages,
        )
        return Response(
            content=result.payload,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{result.output_filename}"'},
        )

    return app


app = create_app()
