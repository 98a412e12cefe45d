"""Subscription lifecycle as an explicit transition table.

Pure functions only: the reconciliation service reads the current record,
asks ``decide`` what to do with an incoming provider event, and performs the
writes itself.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from backoffice.models.base import as_utc
from backoffice.models.payment import PaymentStatus
from backoffice.schemas.webhook import EventType, ProviderSubscription


PROVIDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "active": PaymentStatus.ACTIVE,
    "canceled": PaymentStatus.CANCELED,
    "incomplete": PaymentStatus.INCOMPLETE,
    "incomplete_expired": PaymentStatus.INCOMPLETE_EXPIRED,
    "past_due": PaymentStatus.PAST_DUE,
    "trialing": PaymentStatus.TRIALING,
    "unpaid": PaymentStatus.UNPAID,
    "paused": PaymentStatus.PAUSED,
}

# Only cancellation ends a subscription lineage; FAILED from an unknown status can still recover
TERMINAL_STATUSES = frozenset({PaymentStatus.CANCELED})


def map_provider_status(provider_status: Optional[str]) -> PaymentStatus:
    """Unknown provider statuses collapse to FAILED"""
    return PROVIDER_STATUS_MAP.get(provider_status or "", PaymentStatus.FAILED)


class RecordState(str, Enum):
    ABSENT = "absent"
    LIVE = "live"
    TERMINAL = "terminal"


class SubscriptionAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    RENEW = "renew"
    CANCEL = "cancel"
    SKIP_DUPLICATE = "skip_duplicate"
    SKIP_UNKNOWN = "skip_unknown"
    SKIP_TERMINAL = "skip_terminal"
    SKIP_STALE = "skip_stale"


SKIP_ACTIONS = frozenset({
    SubscriptionAction.SKIP_DUPLICATE,
    SubscriptionAction.SKIP_UNKNOWN,
    SubscriptionAction.SKIP_TERMINAL,
    SubscriptionAction.SKIP_STALE,
})


# (event type, state of the local record) -> base action.
# UPDATE is refined further by comparing billing periods.
TRANSITIONS: Dict[Tuple[EventType, RecordState], SubscriptionAction] = {
    (EventType.SUBSCRIPTION_CREATED, RecordState.ABSENT): SubscriptionAction.INSERT,
    (EventType.SUBSCRIPTION_CREATED, RecordState.LIVE): SubscriptionAction.SKIP_DUPLICATE,
    (EventType.SUBSCRIPTION_CREATED, RecordState.TERMINAL): SubscriptionAction.SKIP_DUPLICATE,
    (EventType.SUBSCRIPTION_UPDATED, RecordState.ABSENT): SubscriptionAction.SKIP_UNKNOWN,
    (EventType.SUBSCRIPTION_UPDATED, RecordState.LIVE): SubscriptionAction.UPDATE,
    (EventType.SUBSCRIPTION_UPDATED, RecordState.TERMINAL): SubscriptionAction.SKIP_TERMINAL,
    (EventType.SUBSCRIPTION_DELETED, RecordState.ABSENT): SubscriptionAction.SKIP_UNKNOWN,
    (EventType.SUBSCRIPTION_DELETED, RecordState.LIVE): SubscriptionAction.CANCEL,
    (EventType.SUBSCRIPTION_DELETED, RecordState.TERMINAL): SubscriptionAction.SKIP_DUPLICATE,
}


@dataclass(frozen=True)
class Transition:
    action: SubscriptionAction
    new_status: Optional[PaymentStatus] = None
    grants_credits: bool = False
    reason: str = ""

    @property
    def is_skip(self) -> bool:
        return self.action in SKIP_ACTIONS


def record_state(current: Optional[Any]) -> RecordState:
    """`current` is anything with a `status` attribute, usually a Payment row"""
    if current is None:
        return RecordState.ABSENT
    if current.status in TERMINAL_STATUSES:
        return RecordState.TERMINAL
    return RecordState.LIVE


def is_renewal(
    new_status: PaymentStatus,
    previous_period_start: Optional[datetime],
    new_period_start: Optional[datetime],
) -> bool:
    """A billing-cycle rollover: active, a known previous period, and a different new one"""
    if new_status != PaymentStatus.ACTIVE:
        return False
    if previous_period_start is None or new_period_start is None:
        return False
    return as_utc(previous_period_start) != as_utc(new_period_start)


def is_stale(previous_period_start: Optional[datetime], new_period_start: Optional[datetime]) -> bool:
    """The event describes a billing period older than the one already stored"""
    if previous_period_start is None or new_period_start is None:
        return False
    return as_utc(new_period_start) < as_utc(previous_period_start)


def decide(event_type: EventType, current: Optional[Any], incoming: ProviderSubscription) -> Transition:
    """Pick the action for one subscription event given the locally stored record"""
    state = record_state(current)
    action = TRANSITIONS.get((event_type, state))
    if action is None:
        raise ValueError(f"No transition for {event_type} on a {state.value} record")

    if action == SubscriptionAction.INSERT:
        return Transition(action, new_status=map_provider_status(incoming.status), grants_credits=True)

    if action == SubscriptionAction.CANCEL:
        return Transition(action, new_status=PaymentStatus.CANCELED)

    if action == SubscriptionAction.UPDATE:
        previous_start = current.period_start
        if is_stale(previous_start, incoming.period_start):
            return Transition(
                SubscriptionAction.SKIP_STALE,
                reason=f"period {incoming.period_start} is older than stored {previous_start}",
            )
        new_status = map_provider_status(incoming.status)
        if is_renewal(new_status, previous_start, incoming.period_start):
            return Transition(SubscriptionAction.RENEW, new_status=new_status, grants_credits=True)
        return Transition(SubscriptionAction.UPDATE, new_status=new_status)

    reasons = {
        SubscriptionAction.SKIP_DUPLICATE: "subscription already recorded",
        SubscriptionAction.SKIP_UNKNOWN: "no local record for subscription",
        SubscriptionAction.SKIP_TERMINAL: "subscription already canceled",
    }
    return Transition(action, reason=reasons.get(action, ""))
