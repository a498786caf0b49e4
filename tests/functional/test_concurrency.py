"""
test_concurrency.py - Concurrent access to one protocol instance

Operations on the same pool or the same mortgage are serialized; the
invariants must hold after any interleaving.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from ancient_lending import InvalidState, LendingProtocol, ProtocolConfig
from tests.conftest import T0


STAKERS = [f"staker_{i}" for i in range(8)]


@pytest.fixture
def busy_protocol():
    protocol = LendingProtocol(ProtocolConfig(term_months=12), initial_time=T0)
    for staker in STAKERS:
        protocol.token.mint(staker, Decimal("5000"))
    protocol.token.mint("alice", Decimal("500000"))
    protocol.token.mint("dave", Decimal("500000"))
    return protocol


class TestConcurrentOperations:

    def test_parallel_deposits(self, busy_protocol):
        pool = busy_protocol.pool
        with ThreadPoolExecutor(max_workers=8) as executor:
            minted = list(executor.map(lambda s: pool.deposit(s, Decimal("1000")), STAKERS))

        assert sum(minted) == Decimal("8000")
        assert pool.total_supply() == Decimal("8000")
        assert busy_protocol.verify_invariants() == []

    def test_parallel_payments_on_one_mortgage(self, busy_protocol):
        mortgages = busy_protocol.mortgages
        token_id = mortgages.purchase_property("alice", Decimal("150000"))

        def pay(_):
            try:
                return mortgages.make_payment("alice", token_id).payment_number
            except InvalidState:
                return None

        with ThreadPoolExecutor(max_workers=6) as executor:
            numbers = list(executor.map(pay, range(20)))

        applied = sorted(n for n in numbers if n is not None)
        assert applied == list(range(1, 13))
        assert not mortgages.get_mortgage(token_id).is_active
        assert busy_protocol.verify_invariants() == []

    def test_mixed_workload(self, busy_protocol):
        pool = busy_protocol.pool
        mortgages = busy_protocol.mortgages
        pool.deposit(STAKERS[0], Decimal("1000"))
        first = mortgages.purchase_property("alice", Decimal("200000"))
        second = mortgages.purchase_property("dave", Decimal("300000"))

        jobs = (
            [lambda: mortgages.make_payment("alice", first)] * 5
            + [lambda: mortgages.make_payment("dave", second)] * 5
            + [lambda s=s: pool.deposit(s, Decimal("500")) for s in STAKERS[1:]]
        )
        with ThreadPoolExecutor(max_workers=8) as executor:
            for future in [executor.submit(job) for job in jobs]:
                future.result()

        assert mortgages.get_mortgage(first).payments_made == 5
        assert mortgages.get_mortgage(second).payments_made == 5
        assert busy_protocol.verify_invariants() == []
        result = busy_protocol.ledger.verify_double_entry(
            {symbol: Decimal("0") for symbol in busy_protocol.ledger.units}
        )
        assert result['valid'], result['discrepancies']
