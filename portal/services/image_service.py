"""
App Submission Portal
Image Asset Service.

Server-side validation and storage of store-listing images:

    key     (app_type, store_type, image_type) must have an upload spec
    format  PNG only
    size    exact pixel dimensions per slot
    count   per-key maximum (App Store feature graphics: per size)

Uploads run as a small saga: blob upload → row insert + progress
recompute → commit. A failed insert removes the uploaded blob.
"""

from __future__ import annotations

import io
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from PIL import Image, UnidentifiedImageError

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.app_form import APP_TYPES, AppForm, FormImage
from portal.services.form_service import apply_client_change_effects
from portal.services.progress import recalculate_form
from portal.services.saga import Saga

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = {"PNG": ("png", "image/png")}


@dataclass(frozen=True)
class ImageSpec:
    sizes: tuple[tuple[int, int], ...]
    max_count: int
    min_count: int = 1
    max_per_size: bool = False

    def describe(self) -> str:
        return " or ".join(f"{w}x{h}" for w, h in self.sizes)


IMAGE_SPECS: dict[tuple[str, str], ImageSpec] = {
    ("playstore", "logo_1024"): ImageSpec(sizes=((1024, 1024),), max_count=1),
    ("playstore", "logo_352"): ImageSpec(sizes=((352, 68),), max_count=1),
    ("playstore", "feature"): ImageSpec(sizes=((1243, 2486),), min_count=4, max_count=8),
    ("playstore", "banner_1024"): ImageSpec(sizes=((1024, 500),), max_count=1),
    ("appstore", "logo_1024"): ImageSpec(sizes=((1024, 1024),), max_count=1),
    ("appstore", "logo_352"): ImageSpec(sizes=((352, 68),), max_count=1),
    ("appstore", "feature"): ImageSpec(
        sizes=((1242, 2688), (1320, 2868)), min_count=4, max_count=8, max_per_size=True,
    ),
}


def get_image_spec(app_type: str, store_type: str, image_type: str) -> ImageSpec:
    spec = IMAGE_SPECS.get((store_type, image_type))
    if app_type not in APP_TYPES or spec is None:
        raise ValidationError(
            "Unsupported image slot",
            details={"image": f"no upload specification for {app_type}/{store_type}/{image_type}"},
        )
    return spec


def inspect_image(data: bytes) -> tuple[str, int, int]:
    """Return (format, width, height); ValidationError when not a readable image."""
    if not data:
        raise ValidationError("Empty file", details={"file": "no data received"})
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("File is not a valid image", details={"file": str(exc)}) from exc
    return fmt, width, height


def validate_image(spec: ImageSpec, data: bytes) -> tuple[str, int, int]:
    fmt, width, height = inspect_image(data)
    if fmt not in ALLOWED_FORMATS:
        raise ValidationError("Invalid image format",
                              details={"file": f"expected PNG, got {fmt}"})
    if (width, height) not in spec.sizes:
        raise ValidationError(
            "Invalid image dimensions",
            details={"file": f"expected {spec.describe()}, got {width}x{height}"},
        )
    return fmt, width, height


def _slot_images(form: AppForm, app_type: str, store_type: str, image_type: str) -> list[FormImage]:
    return [
        img for img in form.images
        if (img.app_type, img.store_type, img.image_type) == (app_type, store_type, image_type)
    ]


def _storage_path(form: AppForm, app_type: str, store_type: str, image_type: str, ext: str) -> str:
    ts = int(time.time() * 1000)
    return f"form-images/{form.id}/{image_type}_{app_type}_{store_type}_{ts}_{uuid.uuid4().hex[:6]}.{ext}"


# ── Operations ──────────────────────────────────────────────────────────────

def upload_image(form: AppForm, *, app_type: str, store_type: str, image_type: str,
                 file_name: str, data: bytes, storage) -> dict:
    spec = get_image_spec(app_type, store_type, image_type)
    fmt, width, height = validate_image(spec, data)

    existing = _slot_images(form, app_type, store_type, image_type)
    if spec.max_per_size:
        existing = [img for img in existing if img.dimensions == f"{width}x{height}"]
    if len(existing) >= spec.max_count:
        raise ValidationError(
            "Image limit reached",
            details={"image": f"at most {spec.max_count} images allowed for this slot"},
        )

    ext, content_type = ALLOWED_FORMATS[fmt]
    path = _storage_path(form, app_type, store_type, image_type, ext)
    previous_percentage = form.progress_percentage or 0

    def _insert():
        image = FormImage(
            app_type=app_type,
            store_type=store_type,
            image_type=image_type,
            file_name=file_name or path.rsplit("/", 1)[-1],
            storage_path=path,
            file_url=storage.public_url(path),
            dimensions=f"{width}x{height}",
            size_bytes=len(data),
        )
        form.images.append(image)
        form.last_activity_date = datetime.now(timezone.utc)
        progress = recalculate_form(form)
        created = apply_client_change_effects(form, previous_percentage)
        db.session.flush()
        return image, progress, created

    saga = Saga("upload_image", on_abort=db.session.rollback)
    saga.run("store_blob", lambda: storage.upload(path, data, content_type),
             compensate=lambda p: storage.remove([p]))
    image, progress, created = saga.run("insert_row", _insert)
    saga.run("commit", db.session.commit)

    logger.info("Form %s: uploaded %s (%dx%d)", form.id, image.catalog_key, width, height,
                extra={"form_id": form.id})
    return {
        "image": image.to_dict(),
        "progress": progress.to_dict(),
        "notifications_created": len(created),
    }


def delete_image(form: AppForm, image_id: str, *, storage) -> dict:
    image = next((img for img in form.images if img.id == image_id), None)
    if image is None:
        raise NotFoundError(resource="FormImage", resource_id=image_id)
    path = image.storage_path
    previous_percentage = form.progress_percentage or 0

    def _remove_row():
        form.images.remove(image)
        form.last_activity_date = datetime.now(timezone.utc)
        progress = recalculate_form(form)
        apply_client_change_effects(form, previous_percentage)
        db.session.flush()
        return progress

    saga = Saga("delete_image", on_abort=db.session.rollback)
    progress = saga.run("remove_row", _remove_row)
    saga.run("remove_blob", lambda: storage.remove([path]))
    saga.run("commit", db.session.commit)

    logger.info("Form %s: deleted image %s", form.id, image_id)
    return {"deleted": True, "id": image_id, "progress": progress.to_dict()}


def list_images(form: AppForm) -> dict:
    """Uploaded images grouped by catalog key, plus per-slot requirement status."""
    grouped: dict[str, list[dict]] = {}
    for img in form.images:
        grouped.setdefault(img.catalog_key, []).append(img.to_dict())
    slots = []
    for (store_type, image_type), spec in IMAGE_SPECS.items():
        for app_type in APP_TYPES:
            key = f"{app_type}_{store_type}_{image_type}"
            count = len(grouped.get(key, []))
            slots.append({
                "key": key,
                "app_type": app_type,
                "store_type": store_type,
                "image_type": image_type,
                "sizes": [f"{w}x{h}" for w, h in spec.sizes],
                "min_count": spec.min_count,
                "max_count": spec.max_count,
                "count": count,
            })
    return {"images": grouped, "slots": slots}
