"""Fixed-width column alignment for rows of rendered SQL fragments."""

from __future__ import annotations

from typing import Iterable, Sequence


def column_widths(rows: Iterable[Sequence[str]]) -> list[int]:
    widths: list[int] = []
    for row in rows:
        for idx, cell in enumerate(row):
            if idx >= len(widths):
                widths.append(0)
            widths[idx] = max(widths[idx], len(cell))
    return widths


def align_rows(
    rows: Sequence[Sequence[str]],
    right_aligned: Iterable[int] = (),
    gutter: str = " ",
) -> list[str]:
    """Pad every field to the widest value in its column and join with `gutter`.

    Empty rows are kept as blank lines and do not count towards the widths.
    Trailing whitespace is stripped, so empty trailing fields leave no padding.
    """
    right = set(right_aligned)
    widths = column_widths(row for row in rows if row)

    lines: list[str] = []
    for row in rows:
        if not row:
            lines.append("")
            continue
        cells = [
            cell.rjust(widths[idx]) if idx in right else cell.ljust(widths[idx])
            for idx, cell in enumerate(row)
        ]
        lines.append(gutter.join(cells).rstrip())
    return lines
