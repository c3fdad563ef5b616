import io
from datetime import date, time

import pytest

from app.lodgeflow.db import session_scope
from app.lodgeflow.modules.catalog.models import Facility, Group, Rule
from app.lodgeflow.modules.listings.models import Listing
from app.lodgeflow.modules.locations.models import Location, Media
from app.lodgeflow.modules.resources.models import Resource
from app.lodgeflow.modules.resources.service import ResourceError, build_schedule_rows
from app.lodgeflow.storage import LocalStorage, StorageError, build_storage_key


# ---------- Catalog ----------
def test_catalog_crud(client, login, app):
    token = login("admin@example.com")
    assert client.get("/admin/catalog/facilities").status_code == 200

    client.post("/admin/catalog/facilities/new", data={"csrf_token": token, "name": "Pool", "description": "Outdoor"})
    client.post("/admin/catalog/rules/new", data={"csrf_token": token, "name": "No smoking", "category": "house_rules"})
    client.post("/admin/catalog/groups/new", data={"csrf_token": token, "name": "Couples", "num": "2"})
    with session_scope(app) as s:
        pool = s.query(Facility).one()
        assert (pool.name, pool.description) == ("Pool", "Outdoor")
        assert s.query(Rule).one().category == "house_rules"
        assert s.query(Group).one().num == 2
        pool_id = pool.id

    assert client.get(f"/admin/catalog/facilities/{pool_id}/edit").status_code == 200
    client.post(f"/admin/catalog/facilities/{pool_id}/edit", data={"csrf_token": token, "name": "Infinity Pool"})
    with session_scope(app) as s:
        assert s.get(Facility, pool_id).name == "Infinity Pool"

    client.post(f"/admin/catalog/facilities/{pool_id}/delete", data={"csrf_token": token})
    with session_scope(app) as s:
        assert s.query(Facility).count() == 0


@pytest.mark.parametrize(
    "kind, data, message",
    [
        ("facilities", {"name": ""}, b"Name is required."),
        ("rules", {"name": "Quiet hours", "category": "vibes"}, b"Invalid category"),
        ("groups", {"name": "Crowd", "num": "0"}, b"Group size must be a whole number"),
    ],
)
def test_catalog_validation(client, login, kind, data, message):
    token = login("admin@example.com")
    r = client.post(f"/admin/catalog/{kind}/new", data={**data, "csrf_token": token}, follow_redirects=True)
    assert message in r.data


def test_catalog_names_are_unique_case_insensitively(client, login, app):
    token = login("admin@example.com")
    client.post("/admin/catalog/facilities/new", data={"csrf_token": token, "name": "Gym"})
    r = client.post("/admin/catalog/facilities/new", data={"csrf_token": token, "name": "gym"}, follow_redirects=True)
    assert b"already exists" in r.data
    with session_scope(app) as s:
        assert s.query(Facility).count() == 1


def test_catalog_unknown_kind_and_staff_read_only(client, login):
    token = login("staff@example.com")
    assert client.get("/admin/catalog/widgets").status_code == 404
    assert client.get("/admin/catalog/rules").status_code == 200
    assert client.post("/admin/catalog/rules/new", data={"csrf_token": token, "name": "X"}).status_code == 403


# ---------- Locations ----------
def _location(client, token, **overrides):
    data = {"csrf_token": token, "name": "Lekki Phase 1", "state": "Lagos", "city": "Lekki", "description": "Beachside"}
    data.update(overrides)
    return client.post("/admin/locations/new", data=data)


def test_location_crud_and_filters(client, login, app):
    token = login("admin@example.com")
    assert _location(client, token).status_code == 302
    _location(client, token, name="Maitama", state="FCT", city="Abuja", description="Embassy district")
    with session_scope(app) as s:
        lekki_id = s.query(Location).filter(Location.name == "Lekki Phase 1").one().id

    r = client.get("/admin/locations?state=fct")
    assert b"Maitama" in r.data and b"Lekki Phase 1" not in r.data
    r = client.get("/admin/locations?q=beach")
    assert b"Lekki Phase 1" in r.data and b"Maitama" not in r.data

    client.post(
        f"/admin/locations/{lekki_id}/edit",
        data={"csrf_token": token, "name": "Lekki", "state": "Lagos", "city": "Lekki"},
    )
    with session_scope(app) as s:
        loc = s.get(Location, lekki_id)
        assert loc.name == "Lekki"
        assert loc.description is None


def test_location_requires_fields(client, login, app):
    token = login("admin@example.com")
    r = _location(client, token, state="", city="")
    assert r.status_code == 302
    r = client.get(r.headers["Location"])
    assert b"State is required." in r.data and b"City is required." in r.data
    with session_scope(app) as s:
        assert s.query(Location).count() == 0


def test_location_delete_blocked_by_resource(client, login, app):
    token = login("admin@example.com")
    _location(client, token)
    with session_scope(app) as s:
        loc_id = s.query(Location).one().id
    client.post(
        "/admin/resources/new",
        data={"csrf_token": token, "name": "Beach Hut", "type": "lodge", "status": "published", "location_id": str(loc_id)},
    )
    r = client.post(f"/admin/locations/{loc_id}/delete", data={"csrf_token": token}, follow_redirects=True)
    assert b"1 resource(s) still reference it" in r.data
    with session_scope(app) as s:
        assert s.get(Location, loc_id) is not None


def test_location_media_upload_and_delete(client, login, app):
    token = login("admin@example.com")
    _location(client, token)
    with session_scope(app) as s:
        loc_id = s.query(Location).one().id

    r = client.post(
        f"/admin/locations/{loc_id}/media",
        data={"csrf_token": token, "caption": "Sunset", "file": (io.BytesIO(b"\x89PNG fake"), "sun set.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        media = s.query(Media).one()
        assert media.type == "image"
        assert media.original_filename == "sun_set.png"
        assert media.metadata_json == {"caption": "Sunset"}
        media_id, key = media.id, media.storage_key
    assert client.get(f"/media/{key}").data == b"\x89PNG fake"

    client.post(f"/admin/media/{media_id}/delete", data={"csrf_token": token})
    with session_scope(app) as s:
        assert s.get(Media, media_id) is None
    assert client.get(f"/media/{key}").status_code == 404


# ---------- Resources ----------
def _resource_form(token, **overrides):
    data = {"csrf_token": token, "name": "Garden Hall", "type": "event", "status": "published", "schedule_type": "24/7"}
    data.update(overrides)
    return data


def test_resource_create_and_duplicate(client, login, app):
    token = login("admin@example.com")
    assert client.get("/admin/resources/new").status_code == 200
    r = client.post("/admin/resources/new", data=_resource_form(token))
    assert r.status_code == 302
    with session_scope(app) as s:
        resource_id = s.query(Resource).one().id
    assert client.get(f"/admin/resources/{resource_id}").status_code == 200

    r = client.post("/admin/resources/new", data=_resource_form(token), follow_redirects=True)
    assert b"already exists" in r.data
    # Same name with a different type is fine.
    client.post("/admin/resources/new", data=_resource_form(token, type="dining"))
    with session_scope(app) as s:
        assert s.query(Resource).count() == 2


def test_resource_rejects_unknown_location(client, login):
    token = login("admin@example.com")
    r = client.post("/admin/resources/new", data=_resource_form(token, location_id="999"), follow_redirects=True)
    assert b"Selected location does not exist." in r.data


def test_resource_links(client, login, app):
    token = login("admin@example.com")
    client.post("/admin/catalog/facilities/new", data={"csrf_token": token, "name": "Wifi"})
    client.post("/admin/catalog/rules/new", data={"csrf_token": token, "name": "No pets", "category": "house_rules"})
    client.post("/admin/catalog/groups/new", data={"csrf_token": token, "name": "Family", "num": "4"})
    client.post("/admin/resources/new", data=_resource_form(token))
    with session_scope(app) as s:
        resource_id = s.query(Resource).one().id
        ids = {
            "facility_ids": [str(s.query(Facility).one().id)],
            "rule_ids": [str(s.query(Rule).one().id)],
            "group_ids": [str(s.query(Group).one().id)],
        }

    client.post(f"/admin/resources/{resource_id}/links", data={"csrf_token": token, **ids})
    with session_scope(app) as s:
        resource = s.get(Resource, resource_id)
        assert [f.name for f in resource.facilities] == ["Wifi"]
        assert [r.name for r in resource.rules] == ["No pets"]
        assert [g.name for g in resource.groups] == ["Family"]

    r = client.post(
        f"/admin/resources/{resource_id}/links",
        data={"csrf_token": token, "facility_ids": ["12345"]},
        follow_redirects=True,
    )
    assert b"Unknown facilities selected." in r.data


def test_resource_schedules(client, login, app):
    token = login("admin@example.com")
    client.post("/admin/resources/new", data=_resource_form(token))
    with session_scope(app) as s:
        resource_id = s.query(Resource).one().id

    client.post(
        f"/admin/resources/{resource_id}/schedules",
        data={"csrf_token": token, "schedule_type": "weekends", "start_time": "10:00", "end_time": "22:00"},
    )
    with session_scope(app) as s:
        resource = s.get(Resource, resource_id)
        assert resource.schedule_type == "weekends"
        assert [(x.day_of_week, x.start_time) for x in resource.schedules] == [
            ("saturday", time(10, 0)),
            ("sunday", time(10, 0)),
        ]

    client.post(
        f"/admin/resources/{resource_id}/schedules",
        data={
            "csrf_token": token,
            "schedule_type": "custom",
            "day_monday": "1",
            "start_monday": "08:00",
            "end_monday": "12:00",
            "day_friday": "1",
            "start_friday": "14:00",
            "end_friday": "18:00",
        },
    )
    with session_scope(app) as s:
        resource = s.get(Resource, resource_id)
        assert [x.day_of_week for x in resource.schedules] == ["monday", "friday"]

    # Switching the resource back to 24/7 drops the hours.
    client.post(f"/admin/resources/{resource_id}/edit", data=_resource_form(token))
    with session_scope(app) as s:
        assert s.get(Resource, resource_id).schedules == []


def test_build_schedule_rows():
    assert build_schedule_rows("24/7", [{"start_time": "x"}]) == []
    rows = build_schedule_rows("weekdays", [{"start_time": "09:00", "end_time": "17:00"}])
    assert [d for d, _, _ in rows] == ["monday", "tuesday", "wednesday", "thursday", "friday"]
    with pytest.raises(ResourceError, match="before end"):
        build_schedule_rows("weekdays", [{"start_time": "17:00", "end_time": "09:00"}])
    with pytest.raises(ResourceError, match="required"):
        build_schedule_rows("custom", [{"day_of_week": "monday", "start_time": "9am", "end_time": "17:00"}])
    with pytest.raises(ResourceError, match="Duplicate"):
        build_schedule_rows(
            "custom",
            [
                {"day_of_week": "monday", "start_time": "09:00", "end_time": "10:00"},
                {"day_of_week": "Monday", "start_time": "11:00", "end_time": "12:00"},
            ],
        )
    with pytest.raises(ResourceError, match="Invalid day"):
        build_schedule_rows("custom", [{"day_of_week": "someday", "start_time": "09:00", "end_time": "10:00"}])
    with pytest.raises(ResourceError, match="At least one"):
        build_schedule_rows("custom", [])
    with pytest.raises(ResourceError, match="Invalid schedule type"):
        build_schedule_rows("sometimes", [])


def test_resource_media_sets_thumbnail(client, login, app):
    token = login("admin@example.com")
    client.post("/admin/resources/new", data=_resource_form(token))
    with session_scope(app) as s:
        resource_id = s.query(Resource).one().id
    client.post(
        f"/admin/resources/{resource_id}/media",
        data={"csrf_token": token, "file": (io.BytesIO(b"jpeg-bytes"), "hall.jpg", "image/jpeg")},
        content_type="multipart/form-data",
    )
    with session_scope(app) as s:
        resource = s.get(Resource, resource_id)
        assert resource.thumbnail == resource.media[0].storage_key


def test_public_browse(client, login, app):
    token = login("admin@example.com")
    _location(client, token)
    client.post("/admin/catalog/groups/new", data={"csrf_token": token, "name": "Couples", "num": "2"})
    with session_scope(app) as s:
        loc_id = s.query(Location).one().id
        group_id = s.query(Group).one().id
    client.post("/admin/resources/new", data=_resource_form(token, name="Beach Hut", type="lodge", location_id=str(loc_id)))
    client.post("/admin/resources/new", data=_resource_form(token, name="Hidden Draft", status="draft"))
    client.post("/admin/resources/new", data=_resource_form(token, name="Rooftop", type="dining"))
    with session_scope(app) as s:
        hut = s.query(Resource).filter(Resource.name == "Beach Hut").one()
        draft_id = s.query(Resource).filter(Resource.name == "Hidden Draft").one().id
        hut_id = hut.id
    client.post(f"/admin/resources/{hut_id}/links", data={"csrf_token": token, "group_ids": [str(group_id)]})
    client.get("/auth/logout")

    r = client.get("/resources")
    assert b"Beach Hut" in r.data and b"Rooftop" in r.data
    assert b"Hidden Draft" not in r.data
    r = client.get("/resources?city=lekki")
    assert b"Beach Hut" in r.data and b"Rooftop" not in r.data
    r = client.get(f"/resources?group={group_id}")
    assert b"Beach Hut" in r.data and b"Rooftop" not in r.data

    assert client.get(f"/resources/{hut_id}").status_code == 200
    assert client.get(f"/resources/{draft_id}").status_code == 404


# ---------- Storage ----------
def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(root=tmp_path / "storage")
    key = build_storage_key("listings", 7, "my photo.JPG", upload_date=date(2026, 6, 1))
    assert key == "listings/7/2026-06-01/my_photo.JPG"
    storage.put_bytes(key, b"abc")
    assert storage.exists(key)
    with storage.open(key) as f:
        assert f.read() == b"abc"
    storage.delete(key)
    assert not storage.exists(key)
    with pytest.raises(StorageError):
        storage.open(key)
    with pytest.raises(StorageError, match="escapes root"):
        storage.put_bytes("../outside.txt", b"x")


def test_listing_image_upload(client, login, make_listing, app):
    listing_id = make_listing()
    token = login("admin@example.com")
    r = client.post(
        f"/admin/listings/{listing_id}/images",
        data={"csrf_token": token, "images": [(io.BytesIO(b"img-1"), "front.png", "image/png")]},
        content_type="multipart/form-data",
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        key = s.get(Listing, listing_id).images[0]
    assert client.get(f"/media/{key}").data == b"img-1"

    r = client.post(
        f"/admin/listings/{listing_id}/images",
        data={"csrf_token": token, "images": [(io.BytesIO(b"%PDF"), "menu.pdf", "application/pdf")]},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"unsupported image type" in r.data

    client.post(f"/admin/listings/{listing_id}/images/remove", data={"csrf_token": token, "key": key})
    with session_scope(app) as s:
        assert s.get(Listing, listing_id).images == []
