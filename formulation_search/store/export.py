"""store/export.py - CSV export of stored result rows."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, Sequence

from ..search.space import round_value

logger = logging.getLogger(__name__)

UNIT_SCALES = {"ratio": 1.0, "percent": 100.0}


def format_row(row: Sequence[float], units: str = "ratio") -> list[str]:
    """Render one row; ``percent`` scales by 100 at export time only."""
    try:
        scale = UNIT_SCALES[units]
    except KeyError:
        raise ValueError(f"units must be one of {sorted(UNIT_SCALES)}, got {units!r}") from None
    return [f"{round_value(v * scale):.12g}" for v in row]


def write_csv(
    path: str | Path,
    component_names: Sequence[str],
    rows: Iterable[Sequence[float]],
    units: str = "ratio",
) -> int:
    """Stream *rows* to *path* under a header of component names.

    Returns the number of data rows written.
    """
    path = Path(path)
    n = 0
    with path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(component_names)
        for row in rows:
            writer.writerow(format_row(row, units))
            n += 1
    logger.info("Exported %d rows → %s  (units=%s)", n, path, units)
    return n
