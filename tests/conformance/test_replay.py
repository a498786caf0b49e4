"""
Replay Conformance Tests

INVARIANT: The transaction log is a complete record of the protocol.

    replay(log) reproduces every balance, every unit state and the event log
    clone_at(t) reproduces the state the ledger had at time t

Time only moves forward, and the same inputs always produce the same
history.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from ancient_lending import LendingProtocol, ProtocolConfig, ProtocolError
from tests.conftest import T0, compare_ledger_states


def run_history(protocol: LendingProtocol, months: int) -> None:
    protocol.token.mint("alice", Decimal("400000"))
    protocol.token.mint("bob", Decimal("20000"))
    protocol.token.mint("carol", Decimal("20000"))
    protocol.pool.deposit("bob", Decimal("5000"))
    protocol.mortgages.purchase_property("alice", Decimal("150000"))
    for month in range(1, months + 1):
        protocol.advance_time(T0 + timedelta(days=30 * month))
        protocol.mortgages.make_payment("alice", 1)
        if month == 2:
            protocol.pool.deposit("carol", Decimal("2000"))
        if month == 3:
            protocol.mortgages.appraise_property("treasury", 1, Decimal("175000"))
            protocol.mortgages.distribute_appreciation("treasury", 1)


class TestReplay:

    @given(st.integers(min_value=0, max_value=12))
    @settings(max_examples=13, deadline=None)
    def test_replay_reproduces_state(self, months):
        protocol = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
        run_history(protocol, months)

        replayed = protocol.ledger.replay()
        diff = compare_ledger_states(protocol.ledger, replayed)
        assert diff["equal"], diff
        assert replayed.event_log == protocol.ledger.event_log
        assert [tx.intent_id for tx in replayed.transaction_log] == \
            [tx.intent_id for tx in protocol.ledger.transaction_log]

    def test_rejections_leave_no_trace_in_replay(self, mortgage_protocol):
        with pytest.raises(ProtocolError):
            mortgage_protocol.pool.deposit("bob", Decimal("1"))
        with pytest.raises(ProtocolError):
            mortgage_protocol.mortgages.make_payment("carol", 1)
        replayed = mortgage_protocol.ledger.replay()
        assert len(replayed.transaction_log) == len(mortgage_protocol.ledger.transaction_log)
        assert compare_ledger_states(mortgage_protocol.ledger, replayed)["equal"]


class TestTemporal:

    @pytest.mark.parametrize("month", [0, 1, 3, 5])
    def test_clone_at_matches_history(self, month):
        protocol = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
        run_history(protocol, 6)

        past = protocol.ledger.clone_at(T0 + timedelta(days=30 * month))
        state = past.get_unit_state("MORTGAGE-1")
        assert state['payments_made'] == month
        assert (state['appraisal'] is not None) == (month >= 3)
        assert past.get_unit_state("ASP")['total_assets'] == past.get_balance("staking_pool", "USDT")

    def test_clone_at_equals_live_ledger_at_that_time(self):
        live = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
        run_history(live, 2)
        checkpoint = live.ledger.clone()

        live.advance_time(T0 + timedelta(days=90))
        live.mortgages.make_payment("alice", 1)

        past = live.ledger.clone_at(T0 + timedelta(days=60))
        diff = compare_ledger_states(checkpoint, past)
        assert diff["equal"], diff

    def test_time_cannot_go_backwards(self, protocol):
        protocol.advance_time(T0 + timedelta(days=1))
        with pytest.raises(ValueError):
            protocol.advance_time(T0)

    def test_clone_at_future_rejected(self, protocol):
        with pytest.raises(ValueError):
            protocol.ledger.clone_at(T0 + timedelta(days=1))


class TestDeterminism:

    def test_same_inputs_same_history(self):
        first = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
        second = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
        run_history(first, 6)
        run_history(second, 6)
        assert [tx.intent_id for tx in first.ledger.transaction_log] == \
            [tx.intent_id for tx in second.ledger.transaction_log]
        assert first.ledger.event_log == second.ledger.event_log
