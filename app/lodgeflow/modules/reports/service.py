from __future__ import annotations

import calendar
import csv
import io
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.lodgeflow.modules.bookings.models import Booking
from app.lodgeflow.modules.bookings.service import booking_financials
from app.lodgeflow.modules.listings.models import Listing

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

PERIOD_UNITS = ("d", "w", "m", "q", "y")
GRANULARITIES = ("day", "week", "month", "quarter", "year")
STATUS_ORDER = ("Confirmed", "Pending", "Completed", "Cancelled")
UNKNOWN_GUEST = "Unknown Guest"
UNASSIGNED_UNIT = "Unassigned"
MAX_BUCKETS = 5000
CSV_HEADERS = (
    "Booking ID",
    "Guest",
    "Venue",
    "Units",
    "Start Date",
    "End Date",
    "Duration (days)",
    "Paid",
    "Owed",
    "Balance",
    "Status",
    "Currency",
)


@dataclass(frozen=True)
class Period:
    unit: str  # d, w, m, q, y
    amount: int

    def __str__(self) -> str:
        return f"{self.amount}{self.unit}"


DEFAULT_PERIOD = Period("m", 1)


def parse_period(value: str | None) -> Period:
    """Parse "3m" into Period("m", 3). Anything unparseable falls back to one month."""
    value = (value or "").strip().lower()
    if len(value) < 2 or value[-1] not in PERIOD_UNITS:
        return DEFAULT_PERIOD
    try:
        amount = int(value[:-1])
    except ValueError:
        return DEFAULT_PERIOD
    if amount < 1:
        return DEFAULT_PERIOD
    return Period(value[-1], amount)


def _zone(tz: str | ZoneInfo | None) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    try:
        return ZoneInfo(tz or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def parse_report_date(value, tz: str | ZoneInfo | None = None) -> date | None:
    """
    Resolve a report boundary to a calendar date.

    A bare YYYY-MM-DD is already a calendar date and is never shifted. Aware datetimes
    (or ISO strings with an offset) are converted into the report timezone first, so a
    late-evening UTC timestamp lands on the local day it belongs to.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        if not text:
            return None
        if len(text) == 10:
            try:
                return date.fromisoformat(text)
            except ValueError:
                return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        try:
            dt = dt.astimezone(_zone(tz))
        except OverflowError:
            return None
    return dt.date()


def today_in(tz: str | ZoneInfo | None) -> date:
    return datetime.now(_zone(tz)).date()


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def subtract_period(d: date, period: Period) -> date:
    if period.unit == "d":
        return d - timedelta(days=period.amount)
    if period.unit == "w":
        return d - timedelta(weeks=period.amount)
    months = {"m": 1, "q": 3, "y": 12}[period.unit] * period.amount
    return add_months(d, -months)


def report_range(to_date: date, period: Period) -> tuple[date, date]:
    return subtract_period(to_date, period), to_date


def period_start(d: date, granularity: str) -> date:
    if granularity == "day":
        return d
    if granularity == "week":
        return d - timedelta(days=d.weekday())
    if granularity == "month":
        return d.replace(day=1)
    if granularity == "quarter":
        return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)
    if granularity == "year":
        return date(d.year, 1, 1)
    raise ValueError(f"Unknown granularity: {granularity}")


def next_period_start(d: date, granularity: str) -> date:
    start = period_start(d, granularity)
    if granularity == "day":
        return start + timedelta(days=1)
    if granularity == "week":
        return start + timedelta(weeks=1)
    if granularity == "month":
        return add_months(start, 1)
    if granularity == "quarter":
        return add_months(start, 3)
    return date(start.year + 1, 1, 1)


def default_granularity(date_from: date, date_to: date) -> str:
    days = (date_to - date_from).days
    if days <= 31:
        return "day"
    if days <= 92:
        return "week"
    if days <= 731:
        return "month"
    if days <= 3660:
        return "quarter"
    return "year"


def bucket_label(start: date, granularity: str) -> str:
    if granularity == "day":
        return start.isoformat()
    if granularity == "week":
        return f"Week of {start.isoformat()}"
    if granularity == "month":
        return start.strftime("%b %Y")
    if granularity == "quarter":
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    return str(start.year)


@dataclass
class Bucket:
    label: str
    start: date
    end: date  # exclusive
    count: int = 0
    units: int = 0
    billed: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")


def bucket_bookings(bookings, date_from: date, date_to: date, granularity: str) -> list[Bucket]:
    """Contiguous buckets covering [date_from, date_to]; each booking lands in the bucket holding its start date."""
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity}")
    buckets: list[Bucket] = []
    cursor = period_start(date_from, granularity)
    while cursor <= date_to:
        if len(buckets) >= MAX_BUCKETS:
            raise ValueError(f"Report range needs more than {MAX_BUCKETS} {granularity} buckets")
        nxt = next_period_start(cursor, granularity)
        buckets.append(Bucket(label=bucket_label(cursor, granularity), start=cursor, end=nxt))
        cursor = nxt

    for b in bookings:
        for bucket in buckets:
            if bucket.start <= b.start_date < bucket.end:
                fin = booking_financials(b)
                bucket.count += 1
                bucket.units += len(b.units)
                bucket.billed += fin.total_bill
                bucket.paid += fin.total_payments
                break
    return buckets


@dataclass(frozen=True)
class ReportRow:
    booking_id: int
    guest: str
    venue: str
    units: list[str]
    start_date: date
    end_date: date
    duration_days: int
    paid: Decimal
    owed: Decimal
    balance: Decimal
    status: str
    currency: str


def build_rows(bookings) -> list[ReportRow]:
    rows = []
    for b in bookings:
        fin = booking_financials(b)
        rows.append(
            ReportRow(
                booking_id=b.id,
                guest=(b.user.name if b.user and b.user.name else UNKNOWN_GUEST),
                venue=b.listing.name,
                units=[u.name for u in b.units],
                start_date=b.start_date,
                end_date=b.end_date,
                duration_days=fin.duration_days,
                paid=fin.total_payments,
                owed=fin.total_bill,
                balance=fin.balance,
                status=b.status,
                currency=b.listing.currency,
            )
        )
    return rows


def summarize(rows: list[ReportRow]) -> dict[str, dict]:
    """Totals split into active (anything not Cancelled) and cancelled."""
    summary = {
        "active": {"count": 0, "total_paid": Decimal("0"), "total_owed": Decimal("0"), "balance": Decimal("0")},
        "cancelled": {"count": 0, "total_paid": Decimal("0"), "total_owed": Decimal("0"), "balance": Decimal("0")},
    }
    for row in rows:
        target = summary["cancelled"] if row.status == "Cancelled" else summary["active"]
        target["count"] += 1
        target["total_paid"] += row.paid
        target["total_owed"] += row.owed
        target["balance"] += row.balance
    return summary


def group_rows(rows: list[ReportRow]) -> dict[str, dict[str, list[ReportRow]]]:
    by_status: dict[str, list[ReportRow]] = {}
    by_guest: dict[str, list[ReportRow]] = {}
    by_unit: dict[str, list[ReportRow]] = {}
    for row in rows:
        by_status.setdefault(row.status, []).append(row)
        by_guest.setdefault(row.guest or UNKNOWN_GUEST, []).append(row)
        for unit in row.units or [UNASSIGNED_UNIT]:
            by_unit.setdefault(unit, []).append(row)

    def _status_rank(key: str) -> int:
        return STATUS_ORDER.index(key) if key in STATUS_ORDER else len(STATUS_ORDER)

    ordered_status = {k: by_status[k] for k in sorted(by_status, key=_status_rank)}
    return {"status": ordered_status, "guest": by_guest, "unit": by_unit}


def rows_to_csv(rows: list[ReportRow]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL)
    writer.writerow(CSV_HEADERS)
    for r in rows:
        writer.writerow(
            [
                r.booking_id,
                r.guest,
                r.venue,
                ", ".join(r.units) or "N/A",
                r.start_date.isoformat(),
                r.end_date.isoformat(),
                r.duration_days,
                f"{r.paid:.2f}",
                f"{r.owed:.2f}",
                f"{r.balance:.2f}",
                r.status,
                r.currency,
            ]
        )
    return buf.getvalue().encode("utf-8")


def fetch_report_bookings(
    s: "Session",
    date_from: date,
    date_to: date,
    listing_id: int | None = None,
    location: str | None = None,
) -> list[Booking]:
    """Bookings whose start date falls within [date_from, date_to]."""
    q = s.query(Booking).filter(Booking.start_date >= date_from, Booking.start_date <= date_to)
    if listing_id:
        q = q.filter(Booking.listing_id == listing_id)
    if location:
        q = q.join(Listing, Listing.id == Booking.listing_id).filter(Listing.location.ilike(f"%{location}%"))
    return q.order_by(Booking.start_date.asc(), Booking.id.asc()).all()
