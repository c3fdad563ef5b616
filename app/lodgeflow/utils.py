from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD (HTML <input type="date">). Invalid input -> None."""
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def parse_int(s: Any, default: int | None = None) -> int | None:
    if s is None or (isinstance(s, str) and not s.strip()):
        return default
    try:
        return int(str(s).strip())
    except ValueError:
        return default


def parse_decimal(s: Any) -> Decimal | None:
    if s is None or (isinstance(s, str) and not s.strip()):
        return None
    try:
        return Decimal(str(s).strip())
    except InvalidOperation:
        return None


def split_list(raw: str | list[str] | None) -> list[str]:
    """Comma-separated form input -> trimmed, non-empty, de-duplicated list (order kept)."""
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else raw.split(",")
    out: list[str] = []
    for item in items:
        v = (item or "").strip()
        if v and v not in out:
            out.append(v)
    return out


@dataclass(frozen=True)
class Page:
    items: list
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def first_index(self) -> int:
        return 0 if self.total == 0 else (self.page - 1) * self.per_page + 1

    @property
    def last_index(self) -> int:
        return min(self.page * self.per_page, self.total)


def paginate(query, page: int | None, per_page: int = 25) -> Page:
    """Paginate a SQLAlchemy query; out-of-range pages clamp to the last page."""
    total = query.order_by(None).count()
    page = max(1, page or 1)
    last = max(1, math.ceil(total / per_page)) if per_page else 1
    page = min(page, last)
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return Page(items=items, page=page, per_page=per_page, total=total)
