# new -> sent_to_advisor -> approved -> redeemed
from __future__ import annotations

from enum import Enum
from typing import Protocol

from moneykaki.core.errors import AlreadyProcessed, InvalidStateTransition


class ApprovalState(str, Enum):
    NEW = "new"
    SENT_TO_ADVISOR = "sent_to_advisor"
    APPROVED = "approved"
    REDEEMED = "redeemed"


_ORDER = [
    ApprovalState.NEW,
    ApprovalState.SENT_TO_ADVISOR,
    ApprovalState.APPROVED,
    ApprovalState.REDEEMED,
]


class Approvable(Protocol):
    sent_to_advisor: bool
    is_approved: bool
    is_redeemed: bool


def state_of(target: Approvable) -> ApprovalState:
    if target.is_redeemed:
        return ApprovalState.REDEEMED
    if target.is_approved:
        return ApprovalState.APPROVED
    if target.sent_to_advisor:
        return ApprovalState.SENT_TO_ADVISOR
    return ApprovalState.NEW


def check_transition(target: Approvable, to: ApprovalState) -> ApprovalState:
    """Raise unless ``to`` is the immediate successor of the current state."""
    current = state_of(target)
    if _ORDER.index(to) == _ORDER.index(current) + 1:
        return current
    if _ORDER.index(current) >= _ORDER.index(to):
        raise AlreadyProcessed(f"already {current.value}", state=current.value)
    raise InvalidStateTransition(current.value, to.value)


def transition(target: Approvable, to: ApprovalState) -> ApprovalState:
    check_transition(target, to)
    if to is ApprovalState.SENT_TO_ADVISOR:
        target.sent_to_advisor = True
    elif to is ApprovalState.APPROVED:
        target.is_approved = True
    elif to is ApprovalState.REDEEMED:
        target.is_redeemed = True
    return to
