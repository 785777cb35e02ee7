from __future__ import annotations

import io
import time

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader

from nupbinder.web import app as web_app
from nupbinder.web.app import _impose_payload, create_app

pytestmark = pytest.mark.integration


def _convert(client: TestClient, payload: bytes | None, *, headers: dict[str, str] | None = None, **form: str):
    data = {"pagesPerSheet": "4", "paperSize": "A4", "mode": "standard"}
    data.update(form)
    files = None if payload is None else {"file": ("Lecture Notes.pdf", payload, "application/pdf")}
    return client.post("/convert", data=data, files=files, headers=headers)


def test_health() -> None:
    client = TestClient(create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_convert_returns_imposed_pdf_attachment(pdf_bytes) -> None:
    client = TestClient(create_app())

    response = _convert(client, pdf_bytes(8, with_content=True), pagesPerSheet="2", mode="Foldable", paperSize="letter")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'attachment; filename="lecture_notes_2up_booklet.pdf"'
    reader = PdfReader(io.BytesIO(response.content))
    assert len(reader.pages) == 4
    assert float(reader.pages[0].mediabox.width) == pytest.approx(612.0)


def test_convert_sequential_filename(pdf_bytes) -> None:
    client = TestClient(create_app())

    response = _convert(client, pdf_bytes(7))

    assert response.status_code == 200
    assert 'filename="lecture_notes_4up_sequential.pdf"' in response.headers["content-disposition"]
    assert len(PdfReader(io.BytesIO(response.content)).pages) == 2


@pytest.mark.parametrize("pages_per_sheet", ["3", "6", "32", "abc", "4.0", " "])
def test_convert_rejects_unsupported_pages_per_sheet(pdf_bytes, pages_per_sheet: str) -> None:
    client = TestClient(create_app())

    response = _convert(client, pdf_bytes(4), pagesPerSheet=pages_per_sheet)

    assert response.status_code == 400
    assert response.json()["detail"].startswith("pagesPerSheet must be 2/4/8/16")


def test_convert_rejects_missing_upload() -> None:
    client = TestClient(create_app())

    response = _convert(client, None)

    assert response.status_code == 400
    assert response.json() == {"detail": "No file uploaded."}


def test_convert_rejects_empty_upload() -> None:
    client = TestClient(create_app())

    response = _convert(client, b"")

    assert response.status_code == 400
    assert response.json() == {"detail": "No file uploaded."}


def test_convert_rejects_unparsable_upload() -> None:
    client = TestClient(create_app())

    response = _convert(client, b"definitely not a pdf")

    assert response.status_code == 400
    assert response.json()["detail"].startswith("The document could not be processed:")


def test_convert_rejects_oversized_upload(pdf_bytes) -> None:
    client = TestClient(create_app(max_upload_bytes=64))

    response = _convert(client, pdf_bytes(2))

    assert response.status_code == 413
    assert response.json() == {"detail": "File too large. Max 64 bytes."}


def test_convert_throttles_repeat_clients() -> None:
    client = TestClient(create_app(max_requests_per_window=2))

    statuses = [_convert(client, None).status_code for _ in range(3)]

    assert statuses == [400, 400, 429]
    assert _convert(client, None).json() == {"detail": "Too many requests. Try again after 1 minute."}


def test_convert_throttle_ignores_forwarded_header_by_default() -> None:
    client = TestClient(create_app(max_requests_per_window=1))

    first = _convert(client, None, headers={"X-Forwarded-For": "203.0.113.7"})
    rotated = _convert(client, None, headers={"X-Forwarded-For": "203.0.113.8"})

    assert first.status_code == 400
    assert rotated.status_code == 429


def test_convert_throttle_keys_on_forwarded_address_when_trusted() -> None:
    client = TestClient(create_app(max_requests_per_window=1, trust_forwarded_for=True))

    first = _convert(client, None, headers={"X-Forwarded-For": "203.0.113.7"})
    second = _convert(client, None, headers={"X-Forwarded-For": "203.0.113.8, 10.0.0.1"})
    repeat = _convert(client, None, headers={"X-Forwarded-For": "203.0.113.7"})

    assert first.status_code == 400
    assert second.status_code == 400
    assert repeat.status_code == 429


def test_convert_throttle_admits_client_again_after_window() -> None:
    client = TestClient(create_app(max_requests_per_window=1, throttle_window_seconds=1))

    assert _convert(client, None).status_code == 400
    assert _convert(client, None).status_code == 429
    time.sleep(1.2)
    assert _convert(client, None).status_code == 400


def test_cors_exposes_content_disposition() -> None:
    client = TestClient(create_app())

    response = client.get("/health", headers={"Origin": "https://print.example.com"})

    assert response.headers["access-control-allow-origin"] == "*"
    assert "Content-Disposition" in response.headers["access-control-expose-headers"]


def test_impose_payload_reports_unexpected_failures(monkeypatch: pytest.MonkeyPatch, pdf_bytes) -> None:
    def _explode(*args, **kwargs):
        raise RuntimeError("codec exploded")

    monkeypatch.setattr(web_app, "impose_pdf", _explode)

    result, failure = _impose_payload(
        payload=pdf_bytes(1),
        source_name="input.pdf",
        pages_per_sheet=4,
        paper_size="A4",
        mode="standard",
    )

    assert result is None
    assert failure is not None
    assert failure.status_code == 500
    assert failure.message == "An error occurred while processing the document: codec exploded"


def test_impose_payload_maps_zero_page_document_to_client_error(pdf_bytes) -> None:
    result, failure = _impose_payload(
        payload=pdf_bytes(0),
        source_name="empty.pdf",
        pages_per_sheet=2,
        paper_size="A4",
        mode="fold",
    )

    assert result is None
    assert failure is not None
    assert failure.status_code == 400
    assert failure.message == "The document could not be processed: source document has no pages."
