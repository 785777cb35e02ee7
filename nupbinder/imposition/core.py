from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal, TypeAlias

from nupbinder.constants import GRID_LAYOUTS

SheetFace: TypeAlias = Literal["single", "front", "back"]
SourceSlot: TypeAlias = int | None


@dataclass(frozen=True)
class Grid:
    columns: int
    rows: int

    @property
    def cells(self) -> int:
        return self.columns * self.rows


@dataclass(frozen=True)
class CellRect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ImposedSheet:
    face: SheetFace
    sheet_index: int
    sources: tuple[SourceSlot, ...]

    def placements(self) -> Iterator[tuple[int, int]]:
        for position, source_index in enumerate(self.sources):
            if source_index is not None:
                yield position, source_index


def resolve_grid(pages_per_sheet: int) -> Grid:
    try:
        columns, rows = GRID_LAYOUTS[pages_per_sheet]
    except KeyError as exc:
        valid = ", ".join(str(value) for value in sorted(GRID_LAYOUTS))
        raise ValueError(f"unsupported pages per sheet {pages_per_sheet!r}, expected one of: {valid}") from exc
    return Grid(columns=columns, rows=rows)


def cell_rect(grid: Grid, position: int, sheet_width: float, sheet_height: float) -> CellRect:
    if not 0 <= position < grid.cells:
        raise ValueError(f"cell position {position} is outside a {grid.columns}x{grid.rows} grid")

    cell_width = sheet_width / grid.columns
    cell_height = sheet_height / grid.rows
    row, col = divmod(position, grid.columns)

    # PDF origin is bottom-left while rows are numbered from the top.
    return CellRect(
        x=col * cell_width,
        y=sheet_height - (row + 1) * cell_height,
        width=cell_width,
        height=cell_height,
    )


def mirrored_position(position: int, columns: int) -> int:
    row, col = divmod(position, columns)
    return row * columns + (columns - 1 - col)


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _check_source_count(source_count: int) -> None:
    if source_count < 0:
        raise ValueError("source_count must be >= 0")


def _source_or_none(source_index: int, source_count: int) -> SourceSlot:
    return source_index if source_index < source_count else None


def sequential_sheet_count(source_count: int, pages_per_sheet: int) -> int:
    _check_source_count(source_count)
    return _ceil_div(source_count, pages_per_sheet)


def booklet_sheet_pair_count(source_count: int, pages_per_sheet: int) -> int:
    _check_source_count(source_count)
    return _ceil_div(source_count, pages_per_sheet * 2)


def impose_sequential(source_count: int, pages_per_sheet: int) -> list[ImposedSheet]:
    grid = resolve_grid(pages_per_sheet)
    sheets: list[ImposedSheet] = []

    for sheet_index in range(sequential_sheet_count(source_count, pages_per_sheet)):
        start = sheet_index * grid.cells
        sources = tuple(_source_or_none(start + position, source_count) for position in range(grid.cells))
        sheets.append(ImposedSheet(face="single", sheet_index=sheet_index, sources=sources))

    return sheets


def booklet_front_sources(sheet_pair_index: int, grid: Grid, source_count: int) -> tuple[SourceSlot, ...]:
    batch_start = sheet_pair_index * grid.cells * 2
    return tuple(
        _source_or_none(batch_start + 2 * position, source_count)
        for position in range(grid.cells)
    )


def booklet_back_sources(sheet_pair_index: int, grid: Grid, source_count: int) -> tuple[SourceSlot, ...]:
    batch_start = sheet_pair_index * grid.cells * 2
    return tuple(
        _source_or_none(batch_start + 2 * mirrored_position(position, grid.columns) + 1, source_count)
        for position in range(grid.cells)
    )


def impose_booklet(source_count: int, pages_per_sheet: int) -> list[ImposedSheet]:
    grid = resolve_grid(pages_per_sheet)
    sheet_pairs = booklet_sheet_pair_count(source_count, pages_per_sheet)

    # Every front precedes every back in the output document.
    fronts = [
        ImposedSheet(face="front", sheet_index=index, sources=booklet_front_sources(index, grid, source_count))
        for index in range(sheet_pairs)
    ]
    backs = [
        ImposedSheet(face="back", sheet_index=index, sources=booklet_back_sources(index, grid, source_count))
        for index in range(sheet_pairs)
    ]
    return [*fronts, *backs]
