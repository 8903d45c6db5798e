from datetime import datetime
from pathlib import Path

import pytest

from localbiz.core.config import settings
from localbiz.core.deps import get_storage
from localbiz.core.errors import ValidationError
from localbiz.core.security import Identity, create_access_token
from localbiz.models.businesses import BusinessImage
from localbiz.models.enums import ApprovalStatus
from localbiz.models.reviews import Review
from localbiz.services.businesses import BusinessRepository
from tests.conftest import BUSINESS_FIELDS, auth_header, make_business, make_user, user_headers


def _create(client, headers, **overrides):
    return client.post("/businesses", json={**BUSINESS_FIELDS, **overrides}, headers=headers)


def test_create_business_starts_pending_and_hidden(client, owner, owner_headers):
    r = _create(client, owner_headers)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["approval_status"] == "pending"
    assert body["owner_id"] == owner.id
    assert body["owner_email"] == "owner@example.com"
    assert body["owner_name"] == "Olive Owner"
    assert body["rating"] == 0
    assert body["review_count"] == 0

    listing = client.get("/businesses").json()
    assert listing["total"] == 0
    assert body["id"] not in [b["id"] for b in listing["items"]]


def test_create_requires_authentication(client):
    r = _create(client, {})
    assert r.status_code == 401


def test_create_rejects_blank_required_field(client, owner_headers):
    r = _create(client, owner_headers, hours="   ")
    assert r.status_code == 422
    assert "hours" in r.json()["detail"]


def test_create_rejects_missing_required_field(client, owner_headers):
    payload = {k: v for k, v in BUSINESS_FIELDS.items() if k != "phone"}
    r = client.post("/businesses", json=payload, headers=owner_headers)
    assert r.status_code == 422


def test_create_rejects_local_image_references(client, owner_headers):
    r = _create(client, owner_headers, images=["https://cdn.example.com/a.jpg", "blob:http://localhost/1234"])
    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"

    r = _create(client, owner_headers, images=["data:image/png;base64,AAAA"])
    assert r.status_code == 422


def test_create_rejects_too_many_images(client, owner_headers):
    images = [f"https://cdn.example.com/{i}.jpg" for i in range(6)]
    assert _create(client, owner_headers, images=images).status_code == 422


def test_images_are_returned_as_ordered_public_urls(client, owner, owner_headers):
    r = _create(
        client,
        owner_headers,
        images=[f"{owner.id}/front.jpg", "https://cdn.example.com/inside.jpg"],
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["images"] == [
        f"http://testserver/media/{owner.id}/front.jpg",
        "https://cdn.example.com/inside.jpg",
    ]
    assert body["image"] == body["images"][0]


def test_business_without_images_uses_placeholder(client, owner_headers):
    body = _create(client, owner_headers).json()
    assert body["images"] == []
    assert body["image"] == "/placeholder.svg"


def test_owner_partial_update(client, owner_headers):
    created = _create(client, owner_headers, website="https://bakery.example.com").json()

    r = client.patch(f"/businesses/{created['id']}", json={"phone": "555-0199"}, headers=owner_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["phone"] == "555-0199"
    assert body["name"] == BUSINESS_FIELDS["name"]
    assert body["website"] == "https://bakery.example.com"
    assert body["approval_status"] == "pending"


def test_owner_cannot_set_approval_status(client, owner_headers):
    created = _create(client, owner_headers).json()

    r = client.patch(f"/businesses/{created['id']}", json={"approval_status": "approved"}, headers=owner_headers)
    assert r.status_code == 403

    r = client.get(f"/businesses/{created['id']}", headers=owner_headers)
    assert r.json()["approval_status"] == "pending"


def test_update_cannot_blank_required_field(client, owner_headers):
    created = _create(client, owner_headers).json()
    r = client.patch(f"/businesses/{created['id']}", json={"name": ""}, headers=owner_headers)
    assert r.status_code == 422


def test_non_owner_cannot_update_or_delete(client, db, owner, owner_headers):
    created = _create(client, owner_headers).json()
    stranger = user_headers(db, "stranger@example.com")

    r = client.patch(f"/businesses/{created['id']}", json={"name": "Hijacked"}, headers=stranger)
    assert r.status_code == 403
    r = client.delete(f"/businesses/{created['id']}", headers=stranger)
    assert r.status_code == 403


def test_admin_can_update_any_business(client, owner_headers, admin_headers):
    created = _create(client, owner_headers).json()
    r = client.patch(f"/businesses/{created['id']}", json={"hours": "Closed"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["hours"] == "Closed"


def test_list_mine_only_returns_own_businesses(client, db, owner, owner_headers):
    other = make_user(db, "other@example.com")
    make_business(db, other, name="Other Shop")
    _create(client, owner_headers, name="Mine A")
    _create(client, owner_headers, name="Mine B")

    body = client.get("/businesses/mine", headers=owner_headers).json()
    assert body["total"] == 2
    assert {b["name"] for b in body["items"]} == {"Mine A", "Mine B"}
    assert all(b["owner_id"] == owner.id for b in body["items"])


def test_pending_detail_hidden_from_public(client, db, owner, owner_headers, admin_headers):
    created = _create(client, owner_headers).json()

    assert client.get(f"/businesses/{created['id']}").status_code == 404
    assert client.get(f"/businesses/{created['id']}", headers=user_headers(db, "v@example.com")).status_code == 404
    assert client.get(f"/businesses/{created['id']}", headers=owner_headers).status_code == 200
    assert client.get(f"/businesses/{created['id']}", headers=admin_headers).status_code == 200


def test_delete_unknown_business_404(client, owner_headers):
    assert client.delete("/businesses/does-not-exist", headers=owner_headers).status_code == 404


def test_delete_cascades_reviews_images_and_files(client, db, owner, owner_headers):
    upload = client.post(
        "/uploads/images",
        files={"file": ("front.png", b"\x89PNG fake", "image/png")},
        headers=owner_headers,
    )
    assert upload.status_code == 201, upload.text
    uploaded = upload.json()

    business = make_business(db, owner)
    db.add(BusinessImage(business_id=business.id, image_url=uploaded["url"], position=0))
    reviewer = make_user(db, "reviewer@example.com")
    db.add(Review(business_id=business.id, user_id=reviewer.id, rating=4, helpful_votes=0))
    db.commit()
    business_id = business.id

    stored_file = Path(settings.media_dir) / uploaded["path"]
    assert stored_file.exists()

    r = client.delete(f"/businesses/{business_id}", headers=owner_headers)
    assert r.status_code == 204, r.text

    db.expire_all()
    assert db.query(Review).filter(Review.business_id == business_id).count() == 0
    assert db.query(BusinessImage).filter(BusinessImage.business_id == business_id).count() == 0
    assert not stored_file.exists()
    assert client.get(f"/businesses/{business_id}", headers=owner_headers).status_code == 404


def test_replacing_images_removes_dropped_uploads(client, owner_headers):
    first = client.post(
        "/uploads/images", files={"file": ("a.png", b"aaa", "image/png")}, headers=owner_headers
    ).json()
    second = client.post(
        "/uploads/images", files={"file": ("b.png", b"bbb", "image/png")}, headers=owner_headers
    ).json()
    created = _create(client, owner_headers, images=[first["url"], second["url"]]).json()

    r = client.patch(f"/businesses/{created['id']}", json={"images": [second["url"]]}, headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["images"] == [second["url"]]
    assert not (Path(settings.media_dir) / first["path"]).exists()
    assert (Path(settings.media_dir) / second["path"]).exists()


def test_approved_listing_is_paginated_with_stable_order(client, db, owner):
    same_time = datetime(2024, 1, 1, 12, 0, 0)
    for i in range(5):
        make_business(db, owner, name=f"Shop {i}", created_at=same_time)
    make_business(db, owner, name="Hidden", status=ApprovalStatus.pending)

    seen = []
    for page in range(3):
        body = client.get("/businesses", params={"page": page, "page_size": 2}).json()
        assert body["total"] == 5
        seen.extend(b["id"] for b in body["items"])
    assert len(seen) == 5
    assert len(set(seen)) == 5
    assert seen == sorted(seen, reverse=True)

    last = client.get("/businesses", params={"page": 2, "page_size": 2}).json()
    assert last["has_more"] is False


def test_listing_filters_and_sorting(client, db, owner):
    make_business(db, owner, name="Sunny Cafe", category="Cafe", rating=4.6, review_count=3)
    make_business(db, owner, name="Moon Cafe", category="Cafe", rating=3.9, review_count=8)
    make_business(db, owner, name="Iron Gym", category="Fitness", rating=4.9, review_count=1)

    body = client.get("/businesses", params={"q": "cafe"}).json()
    assert {b["name"] for b in body["items"]} == {"Sunny Cafe", "Moon Cafe"}

    body = client.get("/businesses", params={"category": "cafe", "min_rating": 4.0}).json()
    assert [b["name"] for b in body["items"]] == ["Sunny Cafe"]

    body = client.get("/businesses", params={"sort": "rating"}).json()
    assert [b["name"] for b in body["items"]] == ["Iron Gym", "Sunny Cafe", "Moon Cafe"]

    body = client.get("/businesses", params={"sort": "name"}).json()
    assert [b["name"] for b in body["items"]] == ["Iron Gym", "Moon Cafe", "Sunny Cafe"]

    cats = client.get("/businesses/categories").json()["items"]
    assert cats == ["Cafe", "Fitness"]


def test_token_of_deleted_user_is_rejected(client, db):
    user = make_user(db, "ghost@example.com")
    token = create_access_token(user.id)
    db.delete(user)
    db.commit()
    assert client.post("/businesses", json=BUSINESS_FIELDS, headers=auth_header(token)).status_code == 401


def _upload(client, headers, name="photo.png", data=b"\x89PNG fake"):
    r = client.post("/uploads/images", files={"file": (name, data, "image/png")}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_cannot_attach_another_users_upload(client, db, owner_headers):
    other_headers = user_headers(db, "other@example.com")
    theirs = _upload(client, other_headers, "theirs.png")

    for ref in (theirs["path"], theirs["url"]):
        r = _create(client, owner_headers, images=[ref])
        assert r.status_code == 403, r.text

    mine = _create(client, owner_headers).json()
    r = client.patch(f"/businesses/{mine['id']}", json={"images": [theirs["url"]]}, headers=owner_headers)
    assert r.status_code == 403
    assert (Path(settings.media_dir) / theirs["path"]).exists()


def test_delete_keeps_images_outside_owner_prefix(client, db, owner, owner_headers):
    other_headers = user_headers(db, "other@example.com")
    theirs = _upload(client, other_headers, "theirs.png")

    business = make_business(db, owner)
    db.add(BusinessImage(business_id=business.id, image_url=theirs["path"], position=0))
    db.commit()

    r = client.delete(f"/businesses/{business.id}", headers=owner_headers)
    assert r.status_code == 204
    assert (Path(settings.media_dir) / theirs["path"]).exists()


def test_resubmitting_returned_images_keeps_files(client, owner_headers):
    uploaded = _upload(client, owner_headers)
    created = _create(client, owner_headers, images=[uploaded["path"]]).json()
    assert created["images"] == [uploaded["url"]]

    r = client.patch(f"/businesses/{created['id']}", json={"images": created["images"]}, headers=owner_headers)
    assert r.status_code == 200, r.text
    assert r.json()["images"] == [uploaded["url"]]
    assert (Path(settings.media_dir) / uploaded["path"]).exists()


def test_image_shared_between_listings_survives_delete(client, owner_headers):
    uploaded = _upload(client, owner_headers)
    first = _create(client, owner_headers, images=[uploaded["url"]]).json()
    second = _create(client, owner_headers, name="Second", images=[uploaded["path"]]).json()

    assert client.delete(f"/businesses/{first['id']}", headers=owner_headers).status_code == 204
    assert (Path(settings.media_dir) / uploaded["path"]).exists()
    assert client.get(f"/businesses/{second['id']}", headers=owner_headers).json()["images"] == [uploaded["url"]]


def test_repository_rejects_unknown_approval_status(db, owner):
    business = make_business(db, owner)
    repo = BusinessRepository(db, get_storage())
    identity = Identity(id=owner.id, email=owner.email)

    with pytest.raises(ValidationError):
        repo.update(identity, business.id, {"approval_status": "bogus"})
