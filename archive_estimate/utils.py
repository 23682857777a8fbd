"""Utility helpers shared across modules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

BYTES_PER_MEGABYTE = 1024 * 1024


def parse_graph_datetime(value: str) -> datetime:
    """Convert Graph ISO strings (with trailing Z) into aware UTC datetimes."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def isoformat_utc(dt: datetime) -> str:
    """Return an ISO string that Graph $filter expressions accept."""
    return ensure_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def age_cutoff(age_limit_days: int, now: datetime | None = None) -> datetime | None:
    """Items created on or before the returned instant are eligible; None means no filter."""
    if age_limit_days <= 0:
        return None
    now = ensure_utc(now) if now else datetime.now(tz=UTC)
    return now - timedelta(days=age_limit_days)


def bytes_to_megabytes(total_bytes: int) -> int:
    return total_bytes // BYTES_PER_MEGABYTE


def mailbox_domain(mailbox: str) -> str:
    """Return the domain part of an address, or '' if there is none."""
    local, sep, domain = mailbox.strip().rpartition("@")
    if not sep or not local:
        return ""
    return domain.lower()
