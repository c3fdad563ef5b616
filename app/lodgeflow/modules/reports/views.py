from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.lodgeflow import mailer
from app.lodgeflow.audit import record_event
from app.lodgeflow.db import db_session
from app.lodgeflow.modules.listings.models import Listing
from app.lodgeflow.modules.reports.service import (
    DEFAULT_PERIOD,
    GRANULARITIES,
    bucket_bookings,
    build_rows,
    default_granularity,
    fetch_report_bookings,
    group_rows,
    parse_period,
    parse_report_date,
    report_range,
    rows_to_csv,
    summarize,
    today_in,
)
from app.lodgeflow.rbac import require_role

bp = Blueprint("reports", __name__)

REPORT_ROLES = ("admin", "staff")


def _build(date_str: str, period_str: str, listing: Listing | None = None, location: str | None = None) -> dict:
    tz = current_app.config.get("REPORT_TIMEZONE")
    to_date = parse_report_date(date_str, tz)
    if not to_date:
        abort(404)
    period = parse_period(period_str)
    granularity = (request.args.get("granularity") or "").strip()
    # Ranges that run off the calendar are not reports.
    try:
        date_from, date_to = report_range(to_date, period)
        if granularity not in GRANULARITIES:
            granularity = default_granularity(date_from, date_to)
        bucket_bookings([], date_from, date_to, granularity)
    except (ValueError, OverflowError):
        abort(404)

    s = db_session()
    bookings = fetch_report_bookings(s, date_from, date_to, listing.id if listing else None, location)
    rows = build_rows(bookings)

    if listing:
        title = f"{listing.name}: {date_from.isoformat()} to {date_to.isoformat()}"
    elif location:
        title = f"{location}: {date_from.isoformat()} to {date_to.isoformat()}"
    else:
        title = f"All listings: {date_from.isoformat()} to {date_to.isoformat()}"

    return {
        "title": title,
        "listing": listing,
        "location": location,
        "date": to_date,
        "period": period,
        "date_from": date_from,
        "date_to": date_to,
        "granularity": granularity,
        "granularities": GRANULARITIES,
        "rows": rows,
        "buckets": bucket_bookings(bookings, date_from, date_to, granularity),
        "summary": summarize(rows),
        "groups": group_rows(rows),
    }


def _filename(ctx: dict) -> str:
    scope = "all"
    if ctx["listing"]:
        scope = f"listing-{ctx['listing'].id}"
    elif ctx["location"]:
        scope = "location-" + "".join(c if c.isalnum() else "-" for c in ctx["location"].lower())
    return f"lodgeflow-report-{scope}-{ctx['date_from'].isoformat()}-{ctx['date_to'].isoformat()}.csv"


def _render(ctx: dict, email_url: str):
    if (request.args.get("format") or "").lower() == "csv":
        return Response(
            rows_to_csv(ctx["rows"]),
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{_filename(ctx)}"'},
        )
    return render_template("reports/report.html", email_url=email_url, **ctx)


def _email(ctx: dict, back_url: str):
    to = (request.form.get("to") or "").strip() or g.current_user.email
    sent = mailer.send_report_email(
        to,
        ctx["title"],
        {"summary": ctx["summary"], "date_from": ctx["date_from"], "date_to": ctx["date_to"], "row_count": len(ctx["rows"])},
        rows_to_csv(ctx["rows"]),
        _filename(ctx),
    )
    s = db_session()
    record_event(
        s,
        actor=g.current_user,
        action="report.email",
        entity_type="Report",
        entity_id=_filename(ctx),
        metadata={"to": to, "sent": sent, "rows": len(ctx["rows"])},
    )
    s.commit()
    if sent:
        flash(f"Report emailed to {to}.", "success")
    else:
        flash("Report could not be emailed. Check SMTP settings.", "danger")
    return redirect(back_url)


@bp.get("/reports")
@require_role(*REPORT_ROLES)
def reports_index():
    today = today_in(current_app.config.get("REPORT_TIMEZONE"))
    return redirect(url_for("reports.report", date_str=today.isoformat(), period_str=str(DEFAULT_PERIOD)))


@bp.get("/reports/<date_str>/<period_str>")
@require_role(*REPORT_ROLES)
def report(date_str: str, period_str: str):
    ctx = _build(date_str, period_str)
    return _render(ctx, url_for("reports.report_email", date_str=date_str, period_str=period_str))


@bp.post("/reports/<date_str>/<period_str>/email")
@require_role(*REPORT_ROLES)
def report_email(date_str: str, period_str: str):
    ctx = _build(date_str, period_str)
    return _email(ctx, url_for("reports.report", date_str=date_str, period_str=period_str))


@bp.get("/reports/listing/<int:listing_id>/<date_str>/<period_str>")
@require_role(*REPORT_ROLES)
def listing_report(listing_id: int, date_str: str, period_str: str):
    listing = db_session().get(Listing, listing_id)
    if not listing:
        abort(404)
    ctx = _build(date_str, period_str, listing=listing)
    return _render(
        ctx,
        url_for("reports.listing_report_email", listing_id=listing_id, date_str=date_str, period_str=period_str),
    )


@bp.post("/reports/listing/<int:listing_id>/<date_str>/<period_str>/email")
@require_role(*REPORT_ROLES)
def listing_report_email(listing_id: int, date_str: str, period_str: str):
    listing = db_session().get(Listing, listing_id)
    if not listing:
        abort(404)
    ctx = _build(date_str, period_str, listing=listing)
    return _email(ctx, url_for("reports.listing_report", listing_id=listing_id, date_str=date_str, period_str=period_str))


@bp.get("/reports/location/<location>/<date_str>/<period_str>")
@require_role(*REPORT_ROLES)
def location_report(location: str, date_str: str, period_str: str):
    ctx = _build(date_str, period_str, location=location)
    return _render(
        ctx,
        url_for("reports.location_report_email", location=location, date_str=date_str, period_str=period_str),
    )


@bp.post("/reports/location/<location>/<date_str>/<period_str>/email")
@require_role(*REPORT_ROLES)
def location_report_email(location: str, date_str: str, period_str: str):
    ctx = _build(date_str, period_str, location=location)
    return _email(ctx, url_for("reports.location_report", location=location, date_str=date_str, period_str=period_str))
