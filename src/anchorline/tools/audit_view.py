"""query_audit tool: filtered view over the audit chain."""

from datetime import UTC, datetime

from anchorline.audit.chain import AuditChain
from anchorline.errors import AnchorlineError, ValidationError
from anchorline.tools.result import error_result


def handle_query_audit(
    *,
    audit: AuditChain,
    actor_id: str | None = None,
    action: str | None = None,
    resource: str | None = None,
    resource_id: str | None = None,
    start: str | None = None,
    end: str | None = None,
    limit: int = 50,
) -> list[dict] | dict:
    """Return matching audit entries, oldest first.

    Callers see who did what to which resource and when. Signatures and
    chain hashes stay out of the view; ``verify_audit`` covers integrity.
    """
    try:
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")
        entries = audit.query(
            actor_id=actor_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            start=_parse_time(start, "start"),
            end=_parse_time(end, "end"),
            limit=limit,
        )
    except AnchorlineError as e:
        return error_result(e)
    return [
        {
            "entry_id": e.entry_id,
            "timestamp": e.timestamp.isoformat(),
            "actor_id": e.actor_id,
            "actor_type": e.actor_type.value,
            "action": e.action,
            "resource": e.resource,
            "resource_id": e.resource_id,
            "details": e.details,
        }
        for e in entries
    ]


def _parse_time(value: str | None, field: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{field} is not an ISO-8601 timestamp: {value!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def handle_verify_audit(*, audit: AuditChain) -> dict:
    return audit.verify_integrity().model_dump(mode="json")
