"""
Audit Service - Append-only log of administrative actions.

Writes are best-effort: a failed audit write is logged and counted but never
propagates to the caller, whose primary effect has already been committed.
"""

import csv
import io
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.models import AuditLog, utc_now
from backoffice.models.api import ActivityItem, AuditAction
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.observability.logging import get_logger
from backoffice.observability.metrics import metrics

logger = get_logger(__name__)

ENTITY_DISPLAY_NAMES: dict[str, str] = {
    "invoice": "invoice",
    "pending_payment": "payment",
    "resource": "resource",
    "lead": "lead",
    "testimonial": "testimonial",
    "user": "user",
    "auth": "authentication",
}

# Fields whose change is spelled out in an update title
SIGNIFICANT_FIELDS = ("status", "name", "title", "email", "amount", "total")

MAX_EXPORT_ROWS = 10_000


def to_epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def entity_display_name(entity: str) -> str:
    return ENTITY_DISPLAY_NAMES.get(entity, entity.replace("_", " "))


def create_title(entity: str, name: str | None = None) -> str:
    label = entity_display_name(entity)
    return f"Created {label}: {name}" if name else f"Created {label}"


def delete_title(entity: str, name: str | None = None) -> str:
    label = entity_display_name(entity)
    return f"Deleted {label}: {name}" if name else f"Deleted {label}"


def update_title(
    entity: str,
    before: Mapping[str, Any] | None = None,
    after: Mapping[str, Any] | None = None,
) -> str:
    """Build "Updated X - field: a → b" from the significant changed fields."""
    label = entity_display_name(entity)
    if before is None or after is None:
        return f"Updated {label}"

    changes = [
        f"{field}: {before.get(field)} → {after[field]}"
        for field in SIGNIFICANT_FIELDS
        if field in after and before.get(field) != after[field]
    ]
    if not changes:
        return f"Updated {label}"
    return f"Updated {label} - {', '.join(changes)}"


def build_title(
    action: AuditAction,
    entity: str,
    name: str | None = None,
    before: Mapping[str, Any] | None = None,
    after: Mapping[str, Any] | None = None,
) -> str:
    if action == AuditAction.CREATE:
        return create_title(entity, name)
    if action == AuditAction.DELETE:
        return delete_title(entity, name)
    if action == AuditAction.UPDATE:
        return update_title(entity, before, after)
    if action == AuditAction.LOGIN:
        return "Admin login"
    return f"{action.value.capitalize()} {entity_display_name(entity)}"


def summarize_changes(
    before: Mapping[str, Any], after: Mapping[str, Any]
) -> dict[str, dict[str, Any]]:
    """Return {field: {before, after}} for every field that differs."""
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(before) | set(after)):
        if before.get(key) != after.get(key):
            changes[key] = {"before": before.get(key), "after": after.get(key)}
    return changes


def format_time_ago(timestamp_ms: int, now: datetime) -> str:
    """Render an epoch-millis timestamp relative to now, e.g. "5 minutes ago"."""
    seconds = max(0, (to_epoch_millis(now) - timestamp_ms) // 1000)

    def ago(value: int, unit: str) -> str:
        return f"{value} {unit}{'' if value == 1 else 's'} ago"

    if seconds < 60:
        return "just now" if seconds < 5 else ago(seconds, "second")
    minutes = seconds // 60
    if minutes < 60:
        return ago(minutes, "minute")
    hours = minutes // 60
    if hours < 24:
        return ago(hours, "hour")
    days = hours // 24
    if days < 7:
        return ago(days, "day")
    weeks = days // 7
    if weeks < 4:
        return ago(weeks, "week")
    months = days // 30
    if months < 12:
        return ago(max(months, 1), "month")
    return ago(days // 365, "year")


def extract_request_meta(headers: Mapping[str, str]) -> RequestMeta:
    """Client IP (first forwarded hop, then x-real-ip, then cf-connecting-ip) and user agent."""
    ip_address = None
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    if not ip_address:
        ip_address = headers.get("x-real-ip") or headers.get("cf-connecting-ip")
    return RequestMeta(ip_address=ip_address, user_agent=headers.get("user-agent"))


def activity_item(entry: AuditLog, now: datetime) -> ActivityItem:
    """Map an audit entry to an activity-feed row."""
    title = str(entry.details.get("title") or "") if entry.details else ""
    return ActivityItem(
        action=f"{entry.action} {entry.entity}: {title or entry.entity_id}",
        time=format_time_ago(entry.timestamp, now),
        entity_type=entry.entity,
        entity_title=title or entry.entity_id,
    )


class AuditService:
    """Audit log writer and reader bound to one database session."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now) -> None:
        self.db = db
        self.clock = clock

    async def log_action(
        self,
        actor: AuthenticatedUser,
        action: AuditAction,
        entity: str,
        entity_id: str,
        details: Mapping[str, Any] | None = None,
        *,
        name: str | None = None,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        meta: RequestMeta | None = None,
        timestamp_ms: int | None = None,
    ) -> bool:
        """
        Append one entry. Returns False (never raises) when the write fails.

        details may carry an explicit "title"; otherwise one is generated from
        the action, entity, name and before/after snapshots.
        """
        payload: dict[str, Any] = dict(details or {})
        payload.setdefault("title", build_title(action, entity, name, before, after))
        if before is not None and after is not None:
            payload["changes"] = summarize_changes(before, after)

        meta = meta or RequestMeta()
        entry = AuditLog(
            user_id=actor.uid,
            user_email=actor.email,
            action=action.value,
            entity=entity,
            entity_id=str(entity_id),
            details=payload,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            timestamp=timestamp_ms if timestamp_ms is not None else to_epoch_millis(self.clock()),
        )

        # Savepoint: a failed insert must not expire rows the caller already
        # committed and is still reading.
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
            await self.db.commit()
        except Exception as exc:
            metrics.audit_write_failures_total.inc()
            logger.error(
                "audit_log_write_failed",
                action=action.value,
                entity=entity,
                entity_id=str(entity_id),
                user_id=actor.uid,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

        logger.debug(
            "audit_log_written",
            action=action.value,
            entity=entity,
            entity_id=str(entity_id),
            title=payload["title"],
        )
        return True

    async def get_recent_activity(self, limit: int = 10) -> list[AuditLog]:
        """Newest entries first; limit is clamped to 1..100."""
        limit = max(1, min(limit, 100))
        stmt = select(AuditLog).order_by(AuditLog.timestamp.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_logs(
        self,
        entity: str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        search: str | None = None,
        limit: int = 50,
    ) -> list[AuditLog]:
        stmt = select(AuditLog)
        if entity:
            stmt = stmt.where(AuditLog.entity == entity)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if user_id:
            stmt = stmt.where(AuditLog.user_id == user_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    AuditLog.details["title"].astext.ilike(pattern),
                    AuditLog.entity_id.ilike(pattern),
                    AuditLog.user_email.ilike(pattern),
                )
            )
        stmt = stmt.order_by(AuditLog.timestamp.desc()).limit(max(1, min(limit, MAX_EXPORT_ROWS)))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def export_csv(
        self,
        entity: str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        search: str | None = None,
    ) -> str:
        """Filtered log as CSV text (newest first)."""
        entries = await self.list_logs(entity, action, user_id, search, limit=MAX_EXPORT_ROWS)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["timestamp", "user_email", "action", "entity", "entity_id", "title"])
        for entry in entries:
            writer.writerow(
                [
                    datetime.fromtimestamp(entry.timestamp / 1000, tz=self.clock().tzinfo).isoformat(),
                    entry.user_email,
                    entry.action,
                    entry.entity,
                    entry.entity_id,
                    (entry.details or {}).get("title", ""),
                ]
            )
        return buffer.getvalue()

    async def purge_older_than(self, days: int) -> int:
        """Retention cleanup: delete entries older than `days`. Returns rows removed."""
        cutoff_ms = to_epoch_millis(self.clock() - timedelta(days=days))
        result = await self.db.execute(delete(AuditLog).where(AuditLog.timestamp < cutoff_ms))
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info("audit_logs_purged", days=days, deleted=deleted)
        return deleted
