from __future__ import annotations

from typing import Final

PAPER_SIZES: Final[dict[str, tuple[float, float]]] = {
    "A3": (841.8898, 1190.551),
    "A4": (595.2756, 841.8898),
    "Legal": (612.0, 1008.0),
    "Letter": (612.0, 792.0),
}
DEFAULT_PAPER_SIZE: Final[str] = "A4"

# pages per sheet -> (columns, rows)
GRID_LAYOUTS: Final[dict[int, tuple[int, int]]] = {
    2: (1, 2),
    4: (2, 2),
    8: (2, 4),
    16: (4, 4),
}
SUPPORTED_PAGES_PER_SHEET: Final[tuple[int, ...]] = tuple(sorted(GRID_LAYOUTS))

FOLDABLE_MODE_PREFIX: Final[str] = "fold"

DEFAULT_MAX_UPLOAD_BYTES: Final[int] = 20 * 1024 * 1024
DEFAULT_MAX_REQUESTS_PER_WINDOW: Final[int] = 5
DEFAULT_THROTTLE_WINDOW_SECONDS: Final[int] = 60
DEFAULT_TRUST_FORWARDED_FOR: Final[bool] = False
