"""
App Submission Portal
Compensating workflow helper.

A Saga runs named steps in order. Each step may register a compensation;
when a later step raises, the compensations of every completed step run
in reverse order, then ``on_abort`` (if given), and a SagaError is raised
carrying the failing step. ``on_abort`` also covers the failing step itself,
which never registered a compensation.

Usage:
    saga = Saga("create_client", on_abort=db.session.rollback)
    user = saga.run("provision_identity",
                    lambda: identity.create_user(email, password),
                    compensate=lambda u: identity.delete_user(u["id"]))
    saga.run("insert_records", _insert)
    saga.run("commit", db.session.commit)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SagaError(Exception):
    """Raised when a saga step fails. ``compensated`` lists the undone steps."""

    def __init__(self, saga: str, step: str, cause: BaseException,
                 compensated: list[str], compensation_failures: list[str]):
        msg = f"{saga} failed at step '{step}': {cause}"
        if compensation_failures:
            msg += f" (compensation failed for: {', '.join(compensation_failures)})"
        super().__init__(msg)
        self.saga = saga
        self.step = step
        self.cause = cause
        self.compensated = compensated
        self.compensation_failures = compensation_failures


class Saga:
    def __init__(self, name: str, on_abort: Callable[[], Any] | None = None):
        self.name = name
        self.on_abort = on_abort
        self._completed: list[tuple[str, Callable[[Any], Any] | None, Any]] = []

    @property
    def completed_steps(self) -> list[str]:
        return [step for step, _comp, _res in self._completed]

    def run(self, step: str, action: Callable[[], Any],
            compensate: Callable[[Any], Any] | None = None) -> Any:
        """Execute ``action``; on failure undo earlier steps and raise SagaError."""
        try:
            result = action()
        except Exception as exc:
            logger.warning("Saga %s: step '%s' failed: %s", self.name, step, exc)
            compensated, failures = self._compensate()
            raise SagaError(self.name, step, exc, compensated, failures) from exc
        self._completed.append((step, compensate, result))
        return result

    def _compensate(self) -> tuple[list[str], list[str]]:
        compensated: list[str] = []
        failures: list[str] = []
        for step, compensate, result in reversed(self._completed):
            if compensate is None:
                continue
            try:
                compensate(result)
                compensated.append(step)
            except Exception:
                logger.exception("Saga %s: compensation for '%s' failed", self.name, step)
                failures.append(step)
        self._completed.clear()
        if self.on_abort is not None:
            try:
                self.on_abort()
            except Exception:
                logger.exception("Saga %s: abort handler failed", self.name)
                failures.append("on_abort")
        return compensated, failures
