"""Entitlement ledger records and the merge rule applied to them.

A subscription lives in one of two partitions depending on which flow created
it. The merge is last-write-wins on ``last_modified``: an update stamped
earlier than the stored record is ignored, as is a redelivery of the operation
already merged with the same derived status.
"""
from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from marketplace_entitlements.core.errors import ValidationError

SubscriptionOrigin = Literal["landing", "webhook"]

ORIGIN_LANDING: SubscriptionOrigin = "landing"
ORIGIN_WEBHOOK: SubscriptionOrigin = "webhook"
ORIGINS: tuple[SubscriptionOrigin, ...] = (ORIGIN_LANDING, ORIGIN_WEBHOOK)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


class SubscriptionStatus(str, Enum):
    PENDING = "Pending"
    ACTIVATED = "Activated"
    SUSPENDED = "Suspended"
    UNSUBSCRIBED = "Unsubscribed"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionStatus:
        for member in cls:
            if member.value.lower() == (value or "").strip().lower():
                return member
        return cls.UNKNOWN


@dataclass(slots=True, frozen=True)
class PurchaserIdentity:
    oid: str
    tenant_id: str
    email: str | None = None
    name: str | None = None


@dataclass(slots=True)
class SubscriptionRecord:
    subscription_id: str
    origin: SubscriptionOrigin
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    plan_id: str | None = None
    offer_id: str | None = None
    quantity: int | None = None
    last_operation_id: str | None = None
    user_oid: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    user_tenant: str | None = None
    created_at: datetime | None = None
    last_modified: datetime | None = None

    @classmethod
    def from_row(cls, row: object) -> SubscriptionRecord:
        return cls(
            subscription_id=row.subscription_id,
            origin=row.origin,
            status=SubscriptionStatus.parse(row.status),
            plan_id=row.plan_id,
            offer_id=row.offer_id,
            quantity=row.quantity,
            last_operation_id=row.last_operation_id,
            user_oid=row.user_oid,
            user_email=row.user_email,
            user_name=row.user_name,
            user_tenant=row.user_tenant,
            created_at=row.created_at,
            last_modified=row.last_modified,
        )

    def to_values(self) -> dict[str, object]:
        values = dataclasses.asdict(self)
        values["status"] = self.status.value
        if values["created_at"] is None:
            values.pop("created_at")
        return values


@dataclass(slots=True, frozen=True)
class LedgerUpdate:
    status: SubscriptionStatus
    observed_at: datetime
    operation_id: str | None = None
    plan_id: str | None = None
    offer_id: str | None = None
    quantity: int | None = None
    identity: PurchaserIdentity | None = None


@dataclass(slots=True)
class MergeResult:
    record: SubscriptionRecord
    applied: bool
    ignored_reason: str | None = None


def parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = _FRACTION_RE.sub(r".\1", value.strip())
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def select_current(records: Iterable[SubscriptionRecord | None]) -> SubscriptionRecord | None:
    """Pick the record to merge into when both partitions hold the id.

    Newer ``last_modified`` wins; on a tie the landing record wins because it
    carries the purchaser identity.
    """
    candidates = [record for record in records if record is not None]
    if not candidates:
        return None

    epoch = datetime.min.replace(tzinfo=timezone.utc)

    def _rank(record: SubscriptionRecord) -> tuple[datetime, int]:
        stamp = _as_utc(record.last_modified) if record.last_modified else epoch
        return stamp, 1 if record.origin == ORIGIN_LANDING else 0

    return max(candidates, key=_rank)


def merge_update(
    existing: SubscriptionRecord | None,
    update: LedgerUpdate,
    *,
    subscription_id: str,
    origin: SubscriptionOrigin,
) -> MergeResult:
    if update.status is SubscriptionStatus.UNKNOWN:
        raise ValidationError("Refusing to commit an Unknown subscription status")

    observed_at = _as_utc(update.observed_at)

    if existing is None:
        record = SubscriptionRecord(
            subscription_id=subscription_id,
            origin=origin,
            created_at=observed_at,
        )
    else:
        if existing.last_modified is not None and observed_at < _as_utc(existing.last_modified):
            return MergeResult(record=existing, applied=False, ignored_reason="stale")
        if (
            update.operation_id is not None
            and update.operation_id == existing.last_operation_id
            and update.status is existing.status
        ):
            return MergeResult(record=existing, applied=False, ignored_reason="duplicate")
        record = dataclasses.replace(existing, origin=origin)
        if record.created_at is None:
            record.created_at = observed_at

    if update.plan_id is not None:
        record.plan_id = update.plan_id
    if update.offer_id is not None:
        record.offer_id = update.offer_id
    if update.quantity is not None:
        record.quantity = update.quantity
    if update.identity is not None:
        record.user_oid = update.identity.oid
        record.user_tenant = update.identity.tenant_id
        record.user_email = update.identity.email or record.user_email
        record.user_name = update.identity.name or record.user_name

    record.status = update.status
    if update.operation_id is not None:
        record.last_operation_id = update.operation_id
    record.last_modified = observed_at

    return MergeResult(record=record, applied=True)


def attach_identity(
    current: SubscriptionRecord,
    identity: PurchaserIdentity,
    *,
    origin: SubscriptionOrigin,
    plan_id: str | None = None,
    offer_id: str | None = None,
    quantity: int | None = None,
) -> SubscriptionRecord:
    """Copy ``current`` into ``origin`` with the purchaser identity attached.

    Status, operation id and ``last_modified`` stay as stored. Commercial
    fields only fill gaps.
    """
    record = dataclasses.replace(
        current,
        origin=origin,
        user_oid=identity.oid,
        user_tenant=identity.tenant_id,
        user_email=identity.email or current.user_email,
        user_name=identity.name or current.user_name,
    )
    record.plan_id = record.plan_id or plan_id
    record.offer_id = record.offer_id or offer_id
    if record.quantity is None:
        record.quantity = quantity
    return record
