# app/payouts/state_machine.py

from app.payouts.model import STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING, STATUS_SUCCESS


class InvalidTransition(Exception):
    pass


ALLOWED = {
    STATUS_PENDING: {STATUS_PROCESSING},
    # PROCESSING->PROCESSING allowed when a recovered payout is resumed
    STATUS_PROCESSING: {STATUS_SUCCESS, STATUS_FAILED, STATUS_PROCESSING},
    STATUS_SUCCESS: set(),
    STATUS_FAILED: set(),
}


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payout transition: {old} -> {new}")


def assert_failure_invariant(new_status: str, error_message: str | None) -> None:
    """
    Invariant: error_message is set on FAILED and only on FAILED.
    """
    if new_status == STATUS_FAILED and not error_message:
        raise ValueError("Invariant violation: status=FAILED requires error_message")
    if new_status != STATUS_FAILED and error_message:
        raise ValueError(f"Invariant violation: status={new_status} must not carry error_message")
