from __future__ import annotations

import json
from typing import Any, Iterable, Sequence


def print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))


def shorten(text: str, width: int) -> str:
    """Collapse whitespace and cut `text` to `width` characters with an ellipsis."""
    flat = " ".join(text.split())
    if width <= 1 or len(flat) <= width:
        return flat
    return flat[: width - 1] + "…"


def format_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    table = [list(headers)] + [list(r) for r in rows]
    ncols = len(headers)
    widths = [max(len(r[i]) if i < len(r) else 0 for r in table) for i in range(ncols)]

    def fmt_row(cols: Sequence[str]) -> str:
        cells = [c.ljust(widths[i]) if i < ncols else c for i, c in enumerate(cols)]
        return "  ".join(cells).rstrip()

    lines = [fmt_row(table[0]), fmt_row(["-" * w for w in widths])]
    lines.extend(fmt_row(r) for r in table[1:])
    return "\n".join(lines)
