# Overview: Best-effort side effects (audit rows, notifications) and bounded external calls.

"""
Side-effect helpers

Two kinds of work hang off a lifecycle operation:

- Best-effort writes that live in the same database transaction (movement
  log, status history, activity log). ``isolated_write`` runs them inside a
  SAVEPOINT so a failure rolls back only that write; the primary mutation
  still commits.
- Calls to third parties (notifications, object storage). ``run_with_timeout``
  runs them on a small worker pool inside an app context and waits at most
  SIDE_EFFECT_TIMEOUT_SECONDS. Notifications go through
  ``dispatch_notification`` which never raises; storage callers decide for
  themselves whether a timeout is fatal.

Every swallowed failure is logged at WARNING with the operation name and
entity id.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable

from flask import current_app

from ..extensions import db

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="backoffice-side-effects")


class SideEffectTimeout(Exception):
    """An external call did not finish within SIDE_EFFECT_TIMEOUT_SECONDS."""


def _timeout_seconds(timeout: float | None) -> float:
    if timeout is not None:
        return timeout
    return float(current_app.config.get("SIDE_EFFECT_TIMEOUT_SECONDS", 5.0))


def run_with_timeout(func: Callable[..., Any], *args, timeout: float | None = None, **kwargs) -> Any:
    """
    Run func on the side-effect pool and wait at most ``timeout`` seconds.

    The worker gets its own app context. Exceptions raised by func propagate;
    a slow call raises SideEffectTimeout (the worker keeps running, its result
    is discarded).
    """
    app = current_app._get_current_object()
    seconds = _timeout_seconds(timeout)

    def _call():
        with app.app_context():
            return func(*args, **kwargs)

    future = _executor.submit(_call)
    try:
        return future.result(timeout=seconds)
    except FutureTimeoutError:
        future.cancel()
        raise SideEffectTimeout(f"{getattr(func, '__qualname__', func)} timed out after {seconds}s")


def best_effort(name: str, func: Callable[..., Any], *args, entity_id: str | None = None, default: Any = None, **kwargs) -> Any:
    """Call func; on any error log a warning and return ``default``."""
    try:
        return func(*args, **kwargs)
    except Exception as exc:
        current_app.logger.warning("%s failed for %s: %s", name, entity_id, exc)
        return default


def isolated_write(name: str, build: Callable[[], Any], *, entity_id: str | None = None) -> bool:
    """
    Add rows inside a SAVEPOINT of the current transaction.

    ``build`` adds objects to the session; they are flushed when the
    savepoint is released. Returns False (after logging) if anything fails,
    in which case only the savepoint is rolled back.
    """
    try:
        with db.session.begin_nested():
            build()
        return True
    except Exception as exc:
        current_app.logger.warning("%s failed for %s: %s", name, entity_id, exc)
        return False


def dispatch_notification(
    event: str,
    payload: dict,
    recipient: str | None,
    *,
    locale: str | None = None,
    timeout: float | None = None,
) -> bool:
    """
    Send a notification through the configured notifier after commit.

    Returns True when the notifier finished in time, False otherwise. Never
    raises.
    """
    from .collaborators import get_collaborator

    entity_id = payload.get("id") if isinstance(payload, dict) else None
    if not recipient:
        current_app.logger.info("Notification %s for %s skipped: no recipient", event, entity_id)
        return False

    locale = locale or current_app.config.get("DEFAULT_LOCALE", "es")
    try:
        notifier = get_collaborator("notifier")
        run_with_timeout(notifier.notify, event, payload, recipient, locale, timeout=timeout)
        return True
    except Exception as exc:
        current_app.logger.warning("Notification %s failed for %s: %s", event, entity_id, exc)
        return False
