"""
Fire-and-forget audit sink.

Settlement operations hand one event per committed state change to the
sink registered at app.extensions["audit_sink"]. The default sink writes a
structured INFO record to the "ceramerp.audit" logger; deployments can swap
in anything with the same emit(event) signature (message bus, audit DB).

A sink failure is logged and swallowed: it never fails or rolls back the
operation that produced the event, which has already committed.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..time_utils import to_utc_z, utcnow


class LoggingAuditSink:
    def __init__(self, logger_name: str = "ceramerp.audit"):
        self.logger = logging.getLogger(logger_name)

    def emit(self, event: dict) -> None:
        self.logger.info(
            "%s %s:%s actor=%s",
            event["action"],
            event["entity_type"],
            event["entity_id"],
            event.get("actor_user_id"),
            extra={"audit_event": event},
        )


class CollectingAuditSink:
    """In-memory sink for tests and local debugging."""

    def __init__(self):
        self.events: list[dict] = []

    def emit(self, event: dict) -> None:
        self.events.append(event)


def install_audit_sink(app, sink=None) -> None:
    app.extensions["audit_sink"] = sink or LoggingAuditSink()


def emit_audit(
    action: str,
    *,
    entity_type: str,
    entity_id,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> None:
    event = {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "actor_user_id": actor_user_id,
        "payload": payload or {},
        "occurred_at": to_utc_z(utcnow()),
    }
    try:
        sink = current_app.extensions.get("audit_sink")
        if sink is not None:
            sink.emit(event)
    except Exception:
        current_app.logger.exception("Audit sink failed for %s %s:%s", action, entity_type, entity_id)
