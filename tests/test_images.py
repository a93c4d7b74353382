"""
Tests for image upload validation, storage and progress effects.

Covers:
  - PNG + exact dimensions enforced server-side
  - per-slot limits, App Store feature graphics counted per size
  - a complete catalog fills the image unit; a delete empties it again
  - failed row insert removes the stored blob
  - uploads after a review decision notify admins
  - client image endpoints (multipart upload, list, delete)
"""

import io
import os

import pytest

from conftest import png_bytes
from portal.core.exceptions import NotFoundError, ValidationError
from portal.models.notification import Notification
from portal.services import image_service
from portal.services.image_service import ImageSpec, delete_image, list_images, upload_image
from portal.services.progress import required_image_catalog
from portal.services.review_lifecycle import approve_form
from portal.services.saga import SagaError

SIZES = {
    ("playstore", "logo_1024"): (1024, 1024),
    ("playstore", "logo_352"): (352, 68),
    ("playstore", "feature"): (1243, 2486),
    ("appstore", "feature"): (1242, 2688),
}


def _upload(form, storage, app_type="driver", store_type="playstore", image_type="logo_1024", size=None,
            fmt="PNG"):
    width, height = size or SIZES[(store_type, image_type)]
    return upload_image(
        form, app_type=app_type, store_type=store_type, image_type=image_type,
        file_name=f"{image_type}.png", data=png_bytes(width, height, fmt), storage=storage,
    )


def _upload_catalog(form, storage):
    for app_type, store_type, image_type in required_image_catalog():
        _upload(form, storage, app_type, store_type, image_type)


def _stored_files(storage):
    found = []
    for root, _dirs, files in os.walk(storage.base_dir):
        found.extend(os.path.join(root, f) for f in files)
    return found


# ═══════════════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════════════


class TestValidation:
    def test_valid_png_is_stored(self, make_client, storage):
        form = make_client().form
        result = _upload(form, storage)

        assert result["image"]["dimensions"] == "1024x1024"
        assert len(form.images) == 1
        assert storage.download(form.images[0].storage_path).startswith(b"\x89PNG")

    def test_wrong_dimensions(self, make_client, storage):
        form = make_client().form
        with pytest.raises(ValidationError) as exc:
            _upload(form, storage, size=(512, 512))
        assert "1024x1024" in exc.value.details["file"]
        assert _stored_files(storage) == []

    def test_jpeg_rejected(self, make_client, storage):
        form = make_client().form
        with pytest.raises(ValidationError) as exc:
            _upload(form, storage, fmt="JPEG")
        assert "PNG" in exc.value.details["file"]

    def test_garbage_rejected(self, make_client, storage):
        form = make_client().form
        with pytest.raises(ValidationError):
            upload_image(form, app_type="driver", store_type="playstore", image_type="logo_1024",
                         file_name="x.png", data=b"not an image", storage=storage)

    def test_unknown_slot(self, make_client, storage):
        form = make_client().form
        with pytest.raises(ValidationError):
            _upload(form, storage, store_type="appstore", image_type="banner_1024", size=(1024, 500))


class TestLimits:
    def test_single_image_slot(self, make_client, storage):
        form = make_client().form
        _upload(form, storage)
        with pytest.raises(ValidationError) as exc:
            _upload(form, storage)
        assert "at most 1" in exc.value.details["image"]

    def test_appstore_feature_limit_is_per_size(self, make_client, storage, monkeypatch):
        monkeypatch.setitem(image_service.IMAGE_SPECS, ("appstore", "feature"), ImageSpec(
            sizes=((1242, 2688), (1320, 2868)), max_count=1, max_per_size=True,
        ))
        form = make_client().form
        _upload(form, storage, store_type="appstore", image_type="feature", size=(1242, 2688))
        with pytest.raises(ValidationError):
            _upload(form, storage, store_type="appstore", image_type="feature", size=(1242, 2688))
        _upload(form, storage, store_type="appstore", image_type="feature", size=(1320, 2868))
        assert len(form.images) == 2


# ═══════════════════════════════════════════════════════════════════════════
#  Progress effects
# ═══════════════════════════════════════════════════════════════════════════


class TestProgressEffects:
    def test_complete_catalog_fills_image_unit(self, make_client, storage):
        form = make_client().form
        _upload_catalog(form, storage)
        assert form.images_uploaded is True
        assert form.progress_percentage == 8

    def test_partial_catalog_does_not(self, make_client, storage):
        form = make_client().form
        _upload(form, storage)
        assert form.images_uploaded is False
        assert form.progress_percentage == 0

    def test_delete_recalculates(self, make_client, storage):
        form = make_client().form
        _upload_catalog(form, storage)
        path = form.images[0].storage_path

        result = delete_image(form, form.images[0].id, storage=storage)

        assert result["progress"]["percentage"] == 0
        assert form.images_uploaded is False
        assert len(form.images) == len(required_image_catalog()) - 1
        assert os.path.join(storage.base_dir, path) not in _stored_files(storage)

    def test_delete_unknown_image(self, make_client, storage):
        form = make_client().form
        with pytest.raises(NotFoundError):
            delete_image(form, "missing", storage=storage)

    def test_upload_after_approval_notifies_admins(self, make_client, admin, storage):
        form = make_client().form
        approve_form(form, admin)
        result = _upload(form, storage)
        assert result["notifications_created"] == 1
        assert Notification.query.filter_by(recipient_type="admin", type="form_updated").count() == 1


class TestUploadCompensation:
    def test_failed_insert_removes_blob(self, make_client, storage, monkeypatch):
        form = make_client().form

        def _boom(*args, **kwargs):
            raise RuntimeError("db down")
        monkeypatch.setattr(image_service, "recalculate_form", _boom)

        with pytest.raises(SagaError) as exc:
            _upload(form, storage)

        assert exc.value.step == "insert_row"
        assert exc.value.compensated == ["store_blob"]
        assert _stored_files(storage) == []
        assert form.images == []


# ═══════════════════════════════════════════════════════════════════════════
#  API
# ═══════════════════════════════════════════════════════════════════════════


class TestImageApi:
    def _post(self, client, headers, data_bytes, **fields):
        payload = {"file": (io.BytesIO(data_bytes), "logo.png"), **fields}
        return client.post("/api/v1/client/form/images", data=payload,
                           content_type="multipart/form-data", headers=headers)

    def test_upload_list_delete(self, client, make_client, auth_headers):
        c = make_client()
        headers = auth_headers(c.user_id)

        res = self._post(client, headers, png_bytes(1024, 1024),
                         app_type="driver", store_type="playstore", image_type="logo_1024")
        assert res.status_code == 201
        image_id = res.get_json()["image"]["id"]

        res = client.get("/api/v1/client/form/images", headers=headers)
        body = res.get_json()
        assert [img["id"] for img in body["images"]["driver_playstore_logo_1024"]] == [image_id]
        slot = next(s for s in body["slots"] if s["key"] == "driver_playstore_logo_1024")
        assert slot["count"] == 1

        res = client.delete(f"/api/v1/client/form/images/{image_id}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True

    def test_wrong_size_is_422(self, client, make_client, auth_headers):
        c = make_client()
        res = self._post(client, auth_headers(c.user_id), png_bytes(100, 100),
                         app_type="driver", store_type="playstore", image_type="logo_1024")
        assert res.status_code == 422

    def test_missing_fields(self, client, make_client, auth_headers):
        c = make_client()
        res = self._post(client, auth_headers(c.user_id), png_bytes(1024, 1024), app_type="driver")
        assert res.status_code == 400

    def test_list_reports_every_slot(self, make_client):
        form = make_client().form
        slots = list_images(form)["slots"]
        assert len(slots) == 2 * len(image_service.IMAGE_SPECS)
        assert all(s["count"] == 0 for s in slots)
