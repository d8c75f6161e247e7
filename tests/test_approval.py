"""
Unit tests for the approval workflow
"""
from types import SimpleNamespace

import pytest

from moneykaki.core.errors import AlreadyProcessed, InvalidStateTransition
from moneykaki.services.approval import ApprovalState, state_of, transition


def _target(sent=False, approved=False, redeemed=False):
    return SimpleNamespace(sent_to_advisor=sent, is_approved=approved, is_redeemed=redeemed)


def test_state_is_derived_from_flags():
    assert state_of(_target()) is ApprovalState.NEW
    assert state_of(_target(sent=True)) is ApprovalState.SENT_TO_ADVISOR
    assert state_of(_target(sent=True, approved=True)) is ApprovalState.APPROVED
    assert state_of(_target(sent=True, approved=True, redeemed=True)) is ApprovalState.REDEEMED


def test_walks_the_full_chain():
    t = _target()
    for state in (ApprovalState.SENT_TO_ADVISOR, ApprovalState.APPROVED, ApprovalState.REDEEMED):
        transition(t, state)
        assert state_of(t) is state


def test_skipping_a_state_is_rejected():
    t = _target()
    with pytest.raises(InvalidStateTransition) as exc:
        transition(t, ApprovalState.APPROVED)

    assert exc.value.details == {"current": "new", "target": "approved"}
    assert state_of(t) is ApprovalState.NEW


@pytest.mark.parametrize("target", [ApprovalState.APPROVED, ApprovalState.SENT_TO_ADVISOR])
def test_moving_backwards_or_repeating_is_already_processed(target):
    t = _target(sent=True, approved=True)
    with pytest.raises(AlreadyProcessed):
        transition(t, target)


def test_redeemed_is_terminal():
    t = _target(sent=True, approved=True, redeemed=True)
    with pytest.raises(AlreadyProcessed):
        transition(t, ApprovalState.REDEEMED)
