"""
Conservation Law Conformance Tests

INVARIANT: For all units u, at all times t:
    Σ_{w ∈ wallets} balance(w, u, t) = 0

Every unit, including pool shares and mortgage tokens, is issued from the
system wallet, so its sum across all wallets (system included) is zero.

In addition the protocol's own accounting must agree with the ledger:
    pool.total_assets == custody balance of the pool wallet
    pool.total_shares == Σ share balances outside the system wallet
    mortgage.payments_made <= term_months, is_active iff payments remain

These tests drive the protocol with arbitrary operation sequences, some of
which fail, and check the invariants after every step.
"""

import pytest
from hypothesis import given, settings, note
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from ancient_lending import LendingProtocol, ProtocolConfig, ProtocolError
from tests.conftest import T0


USERS = ["alice", "bob", "carol", "dave"]


# =============================================================================
# STRATEGIES
# =============================================================================

money = st.decimals(
    min_value=Decimal("1"), max_value=Decimal("20000"),
    places=2, allow_nan=False, allow_infinity=False,
)

prices = st.decimals(
    min_value=Decimal("10000"), max_value=Decimal("200000"),
    places=2, allow_nan=False, allow_infinity=False,
)

operation = st.one_of(
    st.tuples(st.just("deposit"), st.sampled_from(USERS), money),
    st.tuples(st.just("withdraw"), st.sampled_from(USERS), money),
    st.tuples(st.just("interest"), st.sampled_from(USERS), money),
    st.tuples(st.just("transfer"), st.sampled_from(USERS), money),
    st.tuples(st.just("purchase"), st.sampled_from(USERS), prices),
    st.tuples(st.just("pay"), st.sampled_from(USERS), st.integers(min_value=1, max_value=3)),
    st.tuples(st.just("appraise"), st.just("treasury"), prices),
    st.tuples(st.just("distribute"), st.just("treasury"), st.integers(min_value=1, max_value=3)),
    st.tuples(st.just("sell"), st.sampled_from(USERS), st.integers(min_value=1, max_value=3)),
)


def apply(protocol: LendingProtocol, op) -> None:
    kind, user, value = op
    mortgages = protocol.mortgages
    if kind == "deposit":
        protocol.pool.deposit(user, value)
    elif kind == "withdraw":
        protocol.pool.withdraw(user, value)
    elif kind == "interest":
        protocol.pool.receive_interest(user, value)
    elif kind == "transfer":
        protocol.token.transfer(user, USERS[(USERS.index(user) + 1) % len(USERS)], value)
    elif kind == "purchase":
        mortgages.purchase_property(user, value)
    elif kind == "pay":
        mortgages.make_payment(user, value)
    elif kind == "appraise":
        token_ids = mortgages.token_ids()
        if not token_ids:
            raise ProtocolError("nothing to appraise")
        mortgages.appraise_property(user, token_ids[-1], value)
    elif kind == "distribute":
        mortgages.distribute_appreciation(user, value)
    elif kind == "sell":
        mortgages.transfer_mortgage(user, USERS[(USERS.index(user) + 1) % len(USERS)], value)


def assert_conserved(protocol: LendingProtocol) -> None:
    ledger = protocol.ledger
    result = ledger.verify_double_entry({symbol: Decimal("0") for symbol in ledger.units})
    assert result['valid'], result['discrepancies']
    assert protocol.verify_invariants() == []


# =============================================================================
# PROPERTIES
# =============================================================================

class TestConservationUnderRandomOperations:

    @given(st.lists(operation, min_size=1, max_size=25))
    @settings(max_examples=60, deadline=None)
    def test_invariants_hold_after_every_step(self, operations):
        protocol = LendingProtocol(ProtocolConfig(term_months=6), initial_time=T0)
        for user in USERS:
            protocol.token.mint(user, Decimal("100000"))

        for step, op in enumerate(operations, start=1):
            protocol.advance_time(T0 + timedelta(days=step))
            try:
                apply(protocol, op)
                note(f"applied {op}")
            except ProtocolError as e:
                note(f"rejected {op}: {type(e).__name__}")
            assert_conserved(protocol)

    @given(st.lists(money, min_size=1, max_size=10))
    @settings(max_examples=30, deadline=None)
    def test_pool_custody_matches_accounting(self, deposits):
        protocol = LendingProtocol(initial_time=T0)
        protocol.token.mint("bob", Decimal("1000000"))
        for amount in deposits:
            try:
                protocol.pool.deposit("bob", amount)
            except ProtocolError:
                continue
        metrics = protocol.pool.get_pool_metrics()
        assert metrics.total_assets == protocol.token.balance_of("staking_pool")
        assert metrics.total_shares == protocol.pool.balance_of("bob")


class TestPaymentConservation:

    def test_every_payment_is_fully_routed(self, mortgage_protocol):
        treasury_before = mortgage_protocol.token.balance_of("treasury")
        pool_before = mortgage_protocol.token.balance_of("staking_pool")
        alice_before = mortgage_protocol.token.balance_of("alice")

        breakdown = mortgage_protocol.mortgages.make_payment("alice", 1)

        paid = alice_before - mortgage_protocol.token.balance_of("alice")
        to_treasury = mortgage_protocol.token.balance_of("treasury") - treasury_before
        to_pool = mortgage_protocol.token.balance_of("staking_pool") - pool_before
        assert paid == breakdown.payment
        assert to_treasury == breakdown.principal + breakdown.management_fee
        assert to_pool == breakdown.pool_interest
        assert paid == to_treasury + to_pool

    @pytest.mark.parametrize("term", [1, 3, 12, 36])
    def test_principal_fully_repaid(self, term):
        protocol = LendingProtocol(ProtocolConfig(term_months=term), initial_time=T0)
        protocol.token.mint("alice", Decimal("300000"))
        protocol.mortgages.purchase_property("alice", Decimal("150000"))
        principal = sum(
            (protocol.mortgages.make_payment("alice", 1).principal for _ in range(term)),
            Decimal("0"),
        )
        assert principal == Decimal("120000")
        assert_conserved(protocol)
