from __future__ import annotations

import logging
import threading
from threading import Event

import pytest

from app.payouts.errors import GatewayError
from app.payouts.workflow import (
    KeyedLocks,
    PayoutWorkflow,
    WorkflowCancelled,
    customer_email,
)
from tests.conftest import make_payout


def _workflow(repo, gateway, **kw) -> PayoutWorkflow:
    return PayoutWorkflow(repo, gateway, logger=logging.getLogger("tests.workflow"), **kw)


def _saved(repo, **kw):
    p = make_payout(**kw)
    repo.save_payout(p)
    return p


def test_happy_path_runs_three_steps_and_succeeds(repo, gateway):
    p = _saved(repo)
    outcome = _workflow(repo, gateway).run(p)

    assert outcome.status == "SUCCESS"
    stored = repo.get_payout(p.id)
    assert stored.status == "SUCCESS"
    assert stored.error_message is None
    assert stored.gateway_transaction_id == f"tx-{p.reference_id}"
    assert [w[1] for w in repo.status_writes] == ["PROCESSING", "SUCCESS"]
    assert gateway.count("create_customer") == 1
    assert gateway.count("create_payment_method") == 1
    assert gateway.count("create_transaction") == 1


def test_transaction_carries_exact_amount_and_idempotency_key(repo, gateway):
    p = _saved(repo, amount=500000, currency="NGN", batch_id="b-42")
    _workflow(repo, gateway, source_currency="USD").run(p)

    tx = gateway.transactions[0]
    assert tx.destination_amount == "5000.00"
    assert tx.destination_currency == "NGN"
    assert tx.source_currency == "USD"
    assert tx.idempotency_key == p.reference_id
    assert tx.meta["narration"] == "Waya Payout - b-42"
    assert tx.meta["reference"] == p.reference_id


def test_payment_method_is_bank_account_with_bank_code(repo, gateway):
    p = _saved(repo)
    _workflow(repo, gateway).run(p)

    req = [arg for name, arg in gateway.calls if name == "create_payment_method"][0]
    assert req.channel == "BANK_ACCOUNT"
    assert req.account_name == p.recipient_name
    assert req.account_number == "2000012345"
    assert req.bank_code == "033"
    assert req.country_code == "NG"


def test_same_email_creates_customer_once(repo, gateway):
    wf = _workflow(repo, gateway)
    first = _saved(repo, email="ada@example.com")
    second = _saved(repo, email="ada@example.com", account_number="3000000001")

    assert wf.run(first).status == "SUCCESS"
    assert wf.run(second).status == "SUCCESS"

    assert gateway.count("create_customer") == 1
    assert gateway.count("find_customer_by_email") == 2
    # distinct accounts -> distinct payment methods
    assert gateway.count("create_payment_method") == 2


def test_rerun_reuses_payment_method(repo, gateway):
    wf = _workflow(repo, gateway)
    wf.run(_saved(repo))
    wf.run(_saved(repo))
    assert gateway.count("create_payment_method") == 1


def test_customer_creation_failure_marks_failed_and_stops(repo, gateway):
    gateway.fail_create_customer_for.add("Bad Name")
    p = _saved(repo, name="Bad Name")

    outcome = _workflow(repo, gateway).run(p)

    assert outcome.status == "FAILED"
    stored = repo.get_payout(p.id)
    assert stored.status == "FAILED"
    assert stored.error_message == "Failed to create customer: VALIDATION_ERROR: phone is invalid"
    assert gateway.count("find_payment_method") == 0
    assert gateway.count("create_transaction") == 0


def test_lookup_error_other_than_not_found_is_fatal_without_create(repo, gateway):
    gateway.fail_lookup_customer_for.add("emeka@example.com")
    p = _saved(repo)

    outcome = _workflow(repo, gateway).run(p)

    assert outcome.status == "FAILED"
    assert outcome.error_message.startswith("Failed to create customer: HTTP 500")
    assert gateway.count("create_customer") == 0


def test_missing_account_number_fails_at_payment_method_step(repo, gateway):
    p = _saved(repo, account_number=None, tag="emeka_w")

    outcome = _workflow(repo, gateway).run(p)

    assert outcome.status == "FAILED"
    assert outcome.error_message == "Failed to link bank account: missing account number"
    assert gateway.count("create_transaction") == 0


def test_transaction_failure_message_uses_step_label(repo, gateway):
    gateway.fail_transaction_for_currency.add("GHS")
    p = _saved(repo, currency="GHS")

    outcome = _workflow(repo, gateway).run(p)

    assert outcome.error_message == "Transaction failed: INSUFFICIENT_BALANCE: pool is empty"


def test_status_write_failures_do_not_stop_the_worker(repo, gateway):
    p = _saved(repo)
    repo.fail_update = True

    outcome = _workflow(repo, gateway).run(p)

    assert outcome.status == "SUCCESS"
    assert gateway.count("create_transaction") == 1
    # visible status is stale, by policy
    assert repo.get_payout(p.id).status == "PENDING"


def test_cancelled_workflow_stops_before_next_step(repo, gateway):
    cancel = Event()
    wf = _workflow(repo, gateway, cancel_event=cancel)
    p = _saved(repo)

    original = gateway.create_customer

    def create_then_cancel(req):
        cid = original(req)
        cancel.set()
        return cid

    gateway.create_customer = create_then_cancel

    with pytest.raises(WorkflowCancelled):
        wf.run(p)

    assert repo.get_payout(p.id).status == "PROCESSING"
    assert gateway.count("find_payment_method") == 0


@pytest.mark.parametrize(
    "email, tag, expected",
    [
        ("Emeka@Example.com", None, "emeka@example.com"),
        ("", "emeka_w", "temp_emeka_w@waya.com"),
        ("not-an-email", "emeka_w", "temp_emeka_w@waya.com"),
        (None, None, None),
    ],
)
def test_customer_email_synthesis(email, tag, expected):
    p = make_payout(email=email, tag=tag)
    got = customer_email(p)
    if expected is None:
        assert got == f"temp_{p.reference_id}@waya.com".lower()
    else:
        assert got == expected


def test_unexpected_gateway_error_type_is_not_swallowed_by_step(repo, gateway):
    p = _saved(repo)

    def boom(req):
        raise RuntimeError("bug")

    gateway.create_customer = boom
    with pytest.raises(RuntimeError):
        _workflow(repo, gateway).run(p)


def test_gateway_error_keeps_http_status():
    err = GatewayError("HTTP 503: down", http_status=503, retryable=True)
    assert err.http_status == 503
    assert err.retryable is True


def test_keyed_locks_forget_released_keys():
    locks = KeyedLocks()
    for i in range(1000):
        with locks.hold(f"user{i}@example.com"):
            assert len(locks) == 1
    assert len(locks) == 0


def test_keyed_locks_serialize_same_key_and_clean_up():
    locks = KeyedLocks()
    inside = []
    peak = []
    started = threading.Barrier(4)

    def worker():
        started.wait(timeout=5)
        with locks.hold("shared@example.com"):
            inside.append(1)
            peak.append(len(inside))
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert max(peak) == 1
    assert len(locks) == 0


def test_workflow_leaves_no_locks_behind(repo, gateway):
    wf = _workflow(repo, gateway)
    for i in range(5):
        p = make_payout(email=f"u{i}@example.com", account_number=f"20000{i:05d}")
        repo.save_payout(p)
        wf.run(p)

    assert len(wf._customer_locks) == 0
    assert len(wf._payment_method_locks) == 0
