"""
App Submission Portal
Progress Calculator.

The completion percentage of an AppForm is built from 12 equal weight
units: the 11 required text fields plus one image unit.

    image_source == "tilary"  → image unit always filled
    image_source == "custom"  → filled only when every entry of the
                                required image catalog has ≥ 1 upload

    percentage = round_half_up(100 * filled / 12)
    status     = not_started (0) | in_progress (1..99) | completed (100)

Two catalogs exist. ``standard`` (8 entries) covers what the upload screen
offers; ``extended`` (12 entries) adds the App Store logo pair. The active
catalog is chosen with the ``REQUIRED_IMAGE_CATALOG`` config key and applied
by every caller through ``required_image_catalog()``.

Usage:
    from portal.services.progress import recalculate_form

    result = recalculate_form(form)      # writes progress/status, flushes
    result.percentage, result.status
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from flask import current_app, has_app_context

from portal.models import db
from portal.models.app_form import REQUIRED_TEXT_FIELDS, AppForm

logger = logging.getLogger(__name__)

TOTAL_WEIGHT = len(REQUIRED_TEXT_FIELDS) + 1

# An approved form at or above this percentage is reported as complete.
APPROVAL_ALLOWANCE = 95

_STANDARD_CATALOG = (
    ("driver", "playstore", "logo_1024"),
    ("driver", "playstore", "logo_352"),
    ("driver", "playstore", "feature"),
    ("driver", "appstore", "feature"),
    ("passenger", "playstore", "logo_1024"),
    ("passenger", "playstore", "logo_352"),
    ("passenger", "playstore", "feature"),
    ("passenger", "appstore", "feature"),
)

REQUIRED_IMAGE_CATALOGS = {
    "standard": _STANDARD_CATALOG,
    "extended": _STANDARD_CATALOG + (
        ("driver", "appstore", "logo_1024"),
        ("driver", "appstore", "logo_352"),
        ("passenger", "appstore", "logo_1024"),
        ("passenger", "appstore", "logo_352"),
    ),
}


@dataclass(frozen=True)
class ProgressResult:
    percentage: int
    status: str
    filled_fields: int
    image_unit_filled: bool
    images_complete: bool
    missing_images: tuple[str, ...] = field(default_factory=tuple)
    approval_allowance: bool = False

    def to_dict(self) -> dict:
        return {
            "percentage": self.percentage,
            "status": self.status,
            "filled_fields": self.filled_fields,
            "total_weight": TOTAL_WEIGHT,
            "image_unit_filled": self.image_unit_filled,
            "images_complete": self.images_complete,
            "missing_images": list(self.missing_images),
            "approval_allowance": self.approval_allowance,
        }


# ── Pure calculation ─────────────────────────────────────────────────────────

def image_key(app_type: str, store_type: str, image_type: str) -> str:
    return f"{app_type}_{store_type}_{image_type}"


def required_image_catalog(name: str | None = None) -> tuple[tuple[str, str, str], ...]:
    """Return the (app_type, store_type, image_type) entries that must be uploaded."""
    if name is None:
        name = current_app.config.get("REQUIRED_IMAGE_CATALOG", "standard") if has_app_context() else "standard"
    try:
        return REQUIRED_IMAGE_CATALOGS[name]
    except KeyError:
        raise ValueError(
            f"Unknown image catalog '{name}'. Must be one of: {sorted(REQUIRED_IMAGE_CATALOGS)}"
        ) from None


def is_filled(value) -> bool:
    return bool(value is not None and str(value).strip())


def count_filled_fields(form) -> int:
    """Count the required text fields that are non-empty after trimming."""
    return sum(1 for name in REQUIRED_TEXT_FIELDS if is_filled(getattr(form, name, None)))


def missing_required_images(images: Iterable, catalog=None) -> list[str]:
    """Catalog keys with no matching upload, in catalog order."""
    catalog = catalog if catalog is not None else required_image_catalog()
    uploaded = {image_key(img.app_type, img.store_type, img.image_type) for img in images}
    return [image_key(*entry) for entry in catalog if image_key(*entry) not in uploaded]


def image_unit_filled(form, images: Iterable, catalog=None) -> bool:
    """The twelfth weight unit: always filled for tilary, else every catalog entry uploaded."""
    return form.image_source == "tilary" or not missing_required_images(images, catalog)


def calculate_progress(filled: int, total: int = TOTAL_WEIGHT) -> int:
    """``round(100 * filled / total)`` with halves rounded up."""
    if total <= 0:
        return 0
    return (200 * filled + total) // (2 * total)


def derive_status(percentage: int) -> str:
    if percentage >= 100:
        return "completed"
    if percentage > 0:
        return "in_progress"
    return "not_started"


def evaluate_form(form, images: Iterable | None = None, catalog=None) -> ProgressResult:
    """Compute progress for a form without touching the session."""
    images = list(form.images) if images is None else list(images)
    missing = missing_required_images(images, catalog)
    images_complete = not missing
    image_unit = form.image_source == "tilary" or images_complete

    filled_fields = count_filled_fields(form)
    percentage = calculate_progress(filled_fields + (1 if image_unit else 0))
    return ProgressResult(
        percentage=percentage,
        status=derive_status(percentage),
        filled_fields=filled_fields,
        image_unit_filled=image_unit,
        images_complete=images_complete,
        missing_images=tuple(missing),
    )


# ── Persisting wrappers ─────────────────────────────────────────────────────

def recalculate_form(form: AppForm, catalog=None) -> ProgressResult:
    """
    Recompute and store ``progress_percentage``, ``status`` and, for custom
    image sources, the ``images_uploaded`` cache.

    An approved form at ``APPROVAL_ALLOWANCE`` or above stays at 100.
    Flushes only; the caller commits.
    """
    result = evaluate_form(form, catalog=catalog)

    if form.image_source == "custom" and bool(form.images_uploaded) != result.images_complete:
        logger.info("Form %s images_uploaded %s → %s",
                    form.id, form.images_uploaded, result.images_complete)
        form.images_uploaded = result.images_complete

    if form.review_status == "approved" and APPROVAL_ALLOWANCE <= result.percentage < 100:
        result = replace(result, percentage=100, status="completed", approval_allowance=True)

    form.progress_percentage = result.percentage
    form.status = result.status
    db.session.flush()
    return result


def recalculate_all_forms(catalog=None) -> dict:
    """Recompute every form and commit. Returns counts for the caller."""
    checked = 0
    updated = 0
    for form in AppForm.query.order_by(AppForm.created_at).all():
        before = (form.progress_percentage, form.status, form.images_uploaded)
        recalculate_form(form, catalog=catalog)
        checked += 1
        if before != (form.progress_percentage, form.status, form.images_uploaded):
            updated += 1
    db.session.commit()
    logger.info("Recalculated progress for %d forms (%d changed)", checked, updated)
    return {"checked": checked, "updated": updated}
