from nupbinder.imposition.core import (
    CellRect,
    Grid,
    ImposedSheet,
    booklet_back_sources,
    booklet_front_sources,
    booklet_sheet_pair_count,
    cell_rect,
    impose_booklet,
    impose_sequential,
    mirrored_position,
    resolve_grid,
    sequential_sheet_count,
)
from nupbinder.imposition.pdf_writer import (
    GeneratedDocument,
    ImpositionOptionsError,
    MalformedDocumentError,
    PageBox,
    Placement,
    fit_page,
    impose_pdf,
    is_foldable_mode,
    parse_pages_per_sheet,
    resolve_sheet_size,
    validate_pages_per_sheet,
)

__all__ = [
    "CellRect",
    "GeneratedDocument",
    "Grid",
    "ImposedSheet",
    "ImpositionOptionsError",
    "MalformedDocumentError",
    "PageBox",
    "Placement",
    "booklet_back_sources",
    "booklet_front_sources",
    "booklet_sheet_pair_count",
    "cell_rect",
    "fit_page",
    "impose_booklet",
    "impose_pdf",
    "impose_sequential",
    "is_foldable_mode",
    "mirrored_position",
    "parse_pages_per_sheet",
    "resolve_grid",
    "resolve_sheet_size",
    "sequential_sheet_count",
    "validate_pages_per_sheet",
]
