"""
App Submission Portal
Change detection for upload state.

IntervalPoll compares a cached value with a freshly fetched one at a fixed
interval. Clock and sleep are injectable so tests drive time by hand.

Usage:
    poll = IntervalPoll(lambda: image_upload_state(form_id), interval=3)
    poll.run(on_change=lambda change: ..., max_checks=10)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from portal.models import db
from portal.models.app_form import AppForm, FormImage
from portal.services.progress import missing_required_images, recalculate_form

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass(frozen=True)
class PollResult:
    changed: bool
    previous: Any
    current: Any
    checked_at: float


class IntervalPoll:
    def __init__(
        self,
        fetch: Callable[[], Any],
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        initial: Any = _UNSET,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self._cached = initial
        self._last_checked: float | None = None

    @property
    def cached(self) -> Any:
        return None if self._cached is _UNSET else self._cached

    def due(self) -> bool:
        if self._last_checked is None:
            return True
        return self.clock() - self._last_checked >= self.interval

    def check(self, *, force: bool = False) -> PollResult | None:
        """Fetch when due (or forced). None when the interval has not elapsed."""
        if not force and not self.due():
            return None
        current = self.fetch()
        previous = self.cached
        changed = self._cached is not _UNSET and current != self._cached
        self._cached = current
        self._last_checked = self.clock()
        return PollResult(changed=changed, previous=previous, current=current,
                          checked_at=self._last_checked)

    def run(
        self,
        on_change: Callable[[PollResult], Any],
        *,
        max_checks: int | None = None,
        stop: Callable[[], bool] | None = None,
    ) -> int:
        """Poll until ``stop()`` is true or ``max_checks`` fetches ran. Returns the fetch count."""
        checks = 0
        while True:
            if stop is not None and stop():
                break
            result = self.check()
            if result is not None:
                checks += 1
                if result.changed:
                    on_change(result)
                if max_checks is not None and checks >= max_checks:
                    break
            remaining = self.interval - (self.clock() - self._last_checked)
            self.sleep(max(remaining, 0))
        return checks


# ── Upload state ─────────────────────────────────────────────────────────────

def image_upload_state(form_id: str, catalog=None) -> bool:
    """Fresh completeness of the required image catalog for one form."""
    images = FormImage.query.filter_by(form_id=form_id).all()
    return not missing_required_images(images, catalog)


def detect_image_changes(catalog=None) -> dict:
    """
    Compare each custom form's cached ``images_uploaded`` with its uploads
    and recompute the forms whose state drifted.
    """
    checked = 0
    changed = []
    for form in AppForm.query.filter_by(image_source="custom").all():
        checked += 1
        fresh = image_upload_state(form.id, catalog)
        if fresh != bool(form.images_uploaded):
            db.session.expire(form, ["images"])
            recalculate_form(form, catalog=catalog)
            changed.append(form.id)
    if changed:
        db.session.commit()
        logger.info("Image upload state changed for %d forms", len(changed))
    return {"checked": checked, "changed": changed}
