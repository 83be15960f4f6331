import base64

import pytest
from fastapi import HTTPException

from figurine_api.observability import metrics_store
from figurine_api.services.upload_sessions import MISSING_SESSION_DETAIL, ImageUpload


def _image(name: str = "front.png", content: bytes = b"png-bytes", media_type: str = "image/png"):
    return ImageUpload(filename=name, media_type=media_type, content=content)


def test_create_numbers_angles_and_encodes_payload(upload_store, clock):
    session = upload_store.create([_image("front.png"), _image("side.jpg", b"jpeg")])

    assert [image.angle for image in session.images] == [1, 2]
    assert session.images[1].filename == "side.jpg"
    assert base64.b64decode(session.images[0].payload) == b"png-bytes"
    assert session.images[0].size_bytes == len(b"png-bytes")
    assert session.expires_at == clock.now + upload_store.ttl
    assert session.order_id is None
    assert metrics_store.snapshot().counters["upload_sessions_created_total"] == 1


def test_create_rejects_empty_batch(upload_store):
    with pytest.raises(HTTPException) as exc:
        upload_store.create([])

    assert exc.value.status_code == 400
    assert exc.value.detail == "No files uploaded"


def test_create_rejects_too_many_images(upload_store):
    with pytest.raises(HTTPException) as exc:
        upload_store.create([_image(f"{index}.png") for index in range(6)])

    assert exc.value.status_code == 400
    assert len(upload_store) == 0


def test_create_rejects_non_image_media_type(upload_store):
    with pytest.raises(HTTPException) as exc:
        upload_store.create([_image("notes.txt", media_type="text/plain")])

    assert exc.value.status_code == 400
    assert exc.value.detail == "Only image files are allowed"


def test_create_rejects_oversized_image(upload_store):
    with pytest.raises(HTTPException) as exc:
        upload_store.create([_image(content=b"x" * (upload_store.max_image_bytes + 1))])

    assert exc.value.status_code == 413


def test_create_rejects_empty_image(upload_store):
    with pytest.raises(HTTPException) as exc:
        upload_store.create([_image(content=b"")])

    assert exc.value.status_code == 400


def test_get_treats_expired_session_as_missing(upload_store, clock):
    session = upload_store.create([_image()])

    clock.advance(1800)

    assert upload_store.get(session.session_id) is None


def test_attach_order_links_session_once(upload_store):
    session = upload_store.create([_image()])

    attached = upload_store.attach_order(session.session_id, "PGC-AAAA1111")
    again = upload_store.attach_order(session.session_id, "PGC-AAAA1111")

    assert attached.order_id == "PGC-AAAA1111"
    assert again.order_id == "PGC-AAAA1111"
    with pytest.raises(HTTPException) as exc:
        upload_store.attach_order(session.session_id, "PGC-BBBB2222")
    assert exc.value.status_code == 409


def test_attach_order_rejects_missing_or_expired_session(upload_store, clock):
    with pytest.raises(HTTPException) as missing:
        upload_store.attach_order("unknown", "PGC-AAAA1111")

    session = upload_store.create([_image()])
    clock.advance(1801)
    with pytest.raises(HTTPException) as expired:
        upload_store.attach_order(session.session_id, "PGC-AAAA1111")

    assert missing.value.status_code == 400
    assert missing.value.detail == MISSING_SESSION_DETAIL
    assert expired.value.status_code == 400


def test_detach_order_only_releases_matching_link(upload_store):
    session = upload_store.create([_image()])
    upload_store.attach_order(session.session_id, "PGC-AAAA1111")

    upload_store.detach_order(session.session_id, "PGC-OTHER000")
    assert upload_store.get(session.session_id).order_id == "PGC-AAAA1111"

    upload_store.detach_order(session.session_id, "PGC-AAAA1111")
    assert upload_store.get(session.session_id).order_id is None


def test_images_for_order_reads_past_expiry_until_swept(upload_store, clock):
    session = upload_store.create([_image(), _image("back.png")])
    upload_store.attach_order(session.session_id, "PGC-AAAA1111")

    clock.advance(3600)

    assert len(upload_store.images_for_order(session.session_id, "PGC-AAAA1111")) == 2
    assert upload_store.images_for_order(session.session_id, "PGC-OTHER000") == ()

    assert upload_store.sweep_expired() == 1
    assert upload_store.images_for_order(session.session_id, "PGC-AAAA1111") == ()


def test_consume_removes_session(upload_store):
    session = upload_store.create([_image()])

    images = upload_store.consume(session.session_id)

    assert len(images) == 1
    assert upload_store.get(session.session_id) is None
    assert upload_store.consume(session.session_id) == ()


def test_create_sweeps_expired_sessions(upload_store, clock):
    upload_store.create([_image()])
    clock.advance(1800)

    upload_store.create([_image()])

    assert len(upload_store) == 1
    assert metrics_store.snapshot().counters["upload_sessions_swept_total"] == 1
