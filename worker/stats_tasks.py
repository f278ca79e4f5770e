"""RQ entry point for stats updates queued by the change feed."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, Mapping, Optional

from flask import current_app, has_app_context

from services.stats_changes import change_from_payload


def _create_app():
    from app import create_app

    return create_app()


def _get_logger():
    if has_app_context() and current_app:
        return current_app.logger
    return logging.getLogger(__name__)


def process_stats_change(payload: Mapping[str, Any]) -> Optional[dict]:
    """Rebuild the shipped change and run its handler.

    Storage errors propagate so RQ can retry the job; the payload carries both
    snapshots, so a retry replays the exact same pair.
    """
    from services.stats_handlers import handle_change

    kind, change = change_from_payload(payload)
    ctx = nullcontext() if has_app_context() else _create_app().app_context()
    with ctx:
        result = handle_change(kind, change)
        _get_logger().info(
            "Processed stats change",
            extra={"kind": kind, "op": change.op, "skipped": bool(result and result.skipped)},
        )
    return result.to_dict() if result else None
