from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.lodgeflow.db import db_session
from app.lodgeflow.models import User
from app.lodgeflow.modules.catalog.models import RULE_CATEGORIES
from app.lodgeflow.modules.catalog.service import KINDS, CatalogError, create_item, delete_item, update_item
from app.lodgeflow.rbac import require_permission

bp = Blueprint("catalog", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _kind_or_404(kind: str):
    if kind not in KINDS:
        abort(404)
    return KINDS[kind]


def _payload() -> dict:
    return {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "category": request.form.get("category"),
        "num": request.form.get("num"),
    }


@bp.get("/catalog/<kind>")
@require_permission("catalog:read")
def catalog_list(kind: str):
    model, _, label = _kind_or_404(kind)
    s = db_session()
    search = (request.args.get("q") or "").strip()
    q = s.query(model)
    if search:
        q = q.filter(model.name.ilike(f"%{search}%"))
    items = q.order_by(model.name.asc()).all()
    return render_template(
        "admin/catalog/list.html",
        kind=kind,
        label=label,
        items=items,
        search=search,
        rule_categories=RULE_CATEGORIES,
    )


@bp.post("/catalog/<kind>/new")
@require_permission("catalog:update")
def catalog_new_post(kind: str):
    _, _, label = _kind_or_404(kind)
    s = db_session()
    try:
        item = create_item(s, kind, _payload(), _current_user())
    except CatalogError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("catalog.catalog_list", kind=kind))
    s.commit()
    flash(f"{label} '{item.name}' created.", "success")
    return redirect(url_for("catalog.catalog_list", kind=kind))


@bp.get("/catalog/<kind>/<int:item_id>/edit")
@require_permission("catalog:update")
def catalog_edit_get(kind: str, item_id: int):
    model, _, label = _kind_or_404(kind)
    s = db_session()
    item = s.get(model, item_id)
    if not item:
        abort(404)
    return render_template("admin/catalog/edit.html", kind=kind, label=label, item=item, rule_categories=RULE_CATEGORIES)


@bp.post("/catalog/<kind>/<int:item_id>/edit")
@require_permission("catalog:update")
def catalog_edit_post(kind: str, item_id: int):
    model, _, label = _kind_or_404(kind)
    s = db_session()
    item = s.get(model, item_id)
    if not item:
        abort(404)
    try:
        update_item(s, kind, item, _payload(), _current_user())
    except CatalogError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("catalog.catalog_edit_get", kind=kind, item_id=item_id))
    s.commit()
    flash(f"{label} updated.", "success")
    return redirect(url_for("catalog.catalog_list", kind=kind))


@bp.post("/catalog/<kind>/<int:item_id>/delete")
@require_permission("catalog:update")
def catalog_delete(kind: str, item_id: int):
    model, _, label = _kind_or_404(kind)
    s = db_session()
    item = s.get(model, item_id)
    if not item:
        abort(404)
    delete_item(s, kind, item, _current_user())
    s.commit()
    flash(f"{label} deleted.", "success")
    return redirect(url_for("catalog.catalog_list", kind=kind))
