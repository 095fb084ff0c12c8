"""
Audit logging for security-relevant events.
One line per event on the gateway_auth.audit logger; never tokens, codes or passwords.
"""
import logging

from fastapi import Request

EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_CODE_ISSUED = "code_issued"
EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_REFRESHED = "token_refreshed"
EVENT_TOKEN_DENIED = "token_denied"
EVENT_TOKEN_REVOKED = "token_revoked"
EVENT_CLIENT_REGISTERED = "client_registered"
EVENT_BEARER_REJECTED = "bearer_rejected"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"

audit_logger = logging.getLogger("gateway_auth.audit")


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    event_type: str,
    *,
    client_id: str | None = None,
    subject: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
    reason: str | None = None,
) -> None:
    """Emit one audit record. Failures log at WARNING so they survive a quieter LOG_LEVEL."""
    level = logging.INFO if outcome == OUTCOME_SUCCESS else logging.WARNING
    audit_logger.log(
        level,
        "audit event=%s outcome=%s client_id=%s subject=%s ip=%s reason=%s",
        event_type,
        outcome,
        client_id or "-",
        subject or "-",
        ip or "-",
        reason or "-",
        extra={
            "audit_event": event_type,
            "audit_outcome": outcome,
            "client_id": client_id,
            "subject": subject,
        },
    )
