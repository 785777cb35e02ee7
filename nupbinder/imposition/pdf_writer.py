from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pypdf import PdfReader, PdfWriter, Transformation
from pypdf.errors import PdfReadError

from nupbinder.constants import (
    DEFAULT_PAPER_SIZE,
    FOLDABLE_MODE_PREFIX,
    PAPER_SIZES,
    SUPPORTED_PAGES_PER_SHEET,
)
from nupbinder.imposition.core import (
    CellRect,
    Grid,
    ImposedSheet,
    cell_rect,
    impose_booklet,
    impose_sequential,
    resolve_grid,
)

_LOGGER = logging.getLogger("nupbinder.imposition")


class ImpositionOptionsError(ValueError):
    """Raised for option values the engine refuses before reading the document."""


class MalformedDocumentError(ValueError):
    """Raised when the source document cannot be imposed as given."""


@dataclass(frozen=True)
class PageBox:
    left: float
    bottom: float
    width: float
    height: float
    rotation: int = 0

    @property
    def quarter_turned(self) -> bool:
        return self.rotation in (90, 270)

    @property
    def upright_width(self) -> float:
        return self.height if self.quarter_turned else self.width

    @property
    def upright_height(self) -> float:
        return self.width if self.quarter_turned else self.height


@dataclass(frozen=True)
class Placement:
    source_index: int
    position: int
    scale: float
    offset_x: float
    offset_y: float
    rendered_width: float
    rendered_height: float


@dataclass(frozen=True)
class GeneratedDocument:
    payload: bytes
    page_count: int
    sheets: list[ImposedSheet]
    placements: list[tuple[Placement, ...]]


def _log_event(level: int, event_name: str, **event_fields: Any) -> None:
    _LOGGER.log(
        level,
        event_name,
        extra={"event_name": event_name, "event_fields": event_fields},
    )


def resolve_sheet_size(paper_size: str | None) -> tuple[float, float]:
    normalized = (paper_size or "").strip().lower()
    for name, dimensions in PAPER_SIZES.items():
        if name.lower() == normalized:
            return dimensions
    return PAPER_SIZES[DEFAULT_PAPER_SIZE]


def is_foldable_mode(mode: str | None) -> bool:
    return mode is not None and mode.lower().startswith(FOLDABLE_MODE_PREFIX)


def validate_pages_per_sheet(pages_per_sheet: int) -> int:
    if isinstance(pages_per_sheet, bool) or pages_per_sheet not in SUPPORTED_PAGES_PER_SHEET:
        valid = "/".join(str(value) for value in SUPPORTED_PAGES_PER_SHEET)
        raise ImpositionOptionsError(f"pagesPerSheet must be {valid}, got {pages_per_sheet!r}")
    return pages_per_sheet


def parse_pages_per_sheet(value: str | int) -> int:
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            valid = "/".join(str(option) for option in SUPPORTED_PAGES_PER_SHEET)
            raise ImpositionOptionsError(f"pagesPerSheet must be {valid}, got {value!r}") from exc
    return validate_pages_per_sheet(value)


def _slugify(source_name: str) -> str:
    stem = Path(source_name).stem.strip()
    if not stem:
        stem = "output"

    slug = re.sub(r"[^A-Za-z0-9]+", "_", stem).strip("_").lower()
    return slug or "output"


def deterministic_output_filename(source_name: str, pages_per_sheet: int, foldable: bool) -> str:
    suffix = "booklet" if foldable else "sequential"
    return f"{_slugify(source_name)}_{pages_per_sheet}up_{suffix}.pdf"


def page_box(source_page) -> PageBox:
    # pypdf falls back to the media box when a page has no explicit crop box.
    box = source_page.cropbox
    rotation = int(getattr(source_page, "rotation", 0) or 0)
    return PageBox(
        left=float(box.left),
        bottom=float(box.bottom),
        width=float(box.width),
        height=float(box.height),
        rotation=(((rotation + 45) // 90) * 90) % 360,
    )


def fit_page(cell: CellRect, box: PageBox) -> tuple[float, float, float]:
    """Return ``(scale, offset_x, offset_y)`` centering ``box`` inside ``cell``.

    The scale is uniform and the largest one that keeps both displayed
    dimensions inside the cell, so a page carrying a quarter-turn ``/Rotate``
    is fitted on its swapped size. ``box`` must have positive width and height.
    """
    scale = min(cell.width / box.upright_width, cell.height / box.upright_height)
    rendered_width = box.upright_width * scale
    rendered_height = box.upright_height * scale

    offset_x = cell.x + (cell.width - rendered_width) / 2.0
    offset_y = cell.y + (cell.height - rendered_height) / 2.0
    return scale, offset_x, offset_y


def _upright_shift(box: PageBox) -> tuple[float, float]:
    # After rotating by -/Rotate about the origin, move the box back into the
    # first quadrant.
    if box.rotation == 90:
        return 0.0, box.width
    if box.rotation == 180:
        return box.width, box.height
    if box.rotation == 270:
        return box.height, 0.0
    return 0.0, 0.0


def _placement_transform(placement: Placement, box: PageBox) -> Transformation:
    transform = Transformation().translate(-box.left, -box.bottom)
    if box.rotation:
        shift_x, shift_y = _upright_shift(box)
        transform = transform.rotate(-box.rotation).translate(shift_x, shift_y)
    return (
        transform
        .scale(placement.scale, placement.scale)
        .translate(placement.offset_x, placement.offset_y)
    )


def _place_page(
    imposed_page,
    reader: PdfReader,
    source_index: int,
    position: int,
    grid: Grid,
    sheet_width: float,
    sheet_height: float,
) -> Placement:
    source_page = reader.pages[source_index]
    box = page_box(source_page)
    if box.width <= 0 or box.height <= 0:
        raise MalformedDocumentError(
            f"page {source_index + 1} has a degenerate bounding box ({box.width:g} x {box.height:g})"
        )

    cell = cell_rect(grid, position, sheet_width, sheet_height)
    scale, offset_x, offset_y = fit_page(cell, box)
    placement = Placement(
        source_index=source_index,
        position=position,
        scale=scale,
        offset_x=offset_x,
        offset_y=offset_y,
        rendered_width=box.upright_width * scale,
        rendered_height=box.upright_height * scale,
    )

    # merge_transformed_page wraps the merged content in its own q/Q pair and
    # clips it to the source crop box.
    imposed_page.merge_transformed_page(source_page, _placement_transform(placement, box))
    return placement


def _read_source(stream: io.BytesIO) -> tuple[PdfReader, int]:
    try:
        reader = PdfReader(stream)
        if reader.is_encrypted:
            raise MalformedDocumentError("encrypted PDFs are not supported")
        source_count = len(reader.pages)
    except PdfReadError as exc:
        _log_event(logging.WARNING, "impose.job.invalid_pdf", error=str(exc))
        raise MalformedDocumentError(f"source document could not be parsed as a PDF: {exc}") from exc

    if source_count == 0:
        raise MalformedDocumentError("source document has no pages")
    return reader, source_count


def impose_pdf(
    payload: bytes,
    pages_per_sheet: int,
    paper_size: str | None = DEFAULT_PAPER_SIZE,
    mode: str | None = None,
) -> GeneratedDocument:
    pages_per_sheet = validate_pages_per_sheet(pages_per_sheet)
    sheet_width, sheet_height = resolve_sheet_size(paper_size)
    foldable = is_foldable_mode(mode)
    grid = resolve_grid(pages_per_sheet)

    if not payload:
        raise MalformedDocumentError("source document is empty")

    with io.BytesIO(payload) as source_stream:
        reader, source_count = _read_source(source_stream)
        if foldable:
            sheets = impose_booklet(source_count, pages_per_sheet)
        else:
            sheets = impose_sequential(source_count, pages_per_sheet)

        writer = PdfWriter()
        placements: list[tuple[Placement, ...]] = []
        try:
            for sheet in sheets:
                imposed_page = writer.add_blank_page(width=sheet_width, height=sheet_height)
                placements.append(
                    tuple(
                        _place_page(
                            imposed_page,
                            reader=reader,
                            source_index=source_index,
                            position=position,
                            grid=grid,
                            sheet_width=sheet_width,
                            sheet_height=sheet_height,
                        )
                        for position, source_index in sheet.placements()
                    )
                )
        except PdfReadError as exc:
            raise MalformedDocumentError(f"source page content could not be read: {exc}") from exc

        with io.BytesIO() as output:
            writer.write(output)
            output_payload = output.getvalue()

    _log_event(
        logging.INFO,
        "impose.job.completed",
        source_pages=source_count,
        pages_per_sheet=pages_per_sheet,
        foldable=foldable,
        output_pages=len(sheets),
        output_bytes=len(output_payload),
    )
    return GeneratedDocument(
        payload=output_payload,
        page_count=len(sheets),
        sheets=sheets,
        placements=placements,
    )
