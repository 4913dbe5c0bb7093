import pytest

from app.payouts.state_machine import (
    InvalidTransition,
    assert_failure_invariant,
    assert_transition,
)


def test_valid_transitions():
    assert_transition("PENDING", "PROCESSING")
    assert_transition("PROCESSING", "SUCCESS")
    assert_transition("PROCESSING", "FAILED")


def test_resumed_payout_may_reenter_processing():
    assert_transition("PROCESSING", "PROCESSING")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition("PENDING", "SUCCESS")
    with pytest.raises(InvalidTransition):
        assert_transition("PENDING", "FAILED")


def test_terminal_states_cannot_transition():
    with pytest.raises(InvalidTransition):
        assert_transition("SUCCESS", "FAILED")
    with pytest.raises(InvalidTransition):
        assert_transition("FAILED", "PROCESSING")


def test_failed_requires_error_message():
    with pytest.raises(ValueError):
        assert_failure_invariant("FAILED", None)
    with pytest.raises(ValueError):
        assert_failure_invariant("SUCCESS", "boom")
    assert_failure_invariant("FAILED", "Transaction failed: boom")
    assert_failure_invariant("SUCCESS", None)
