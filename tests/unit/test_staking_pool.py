"""
test_staking_pool.py - Unit tests for staking pool units

Tests:
- Pure calculations (exchange rate, share minting, withdrawal amounts)
- Deposit and withdrawal validation
- Inflows (interest, appreciation)
- compute_* functions against a FakeView
- StakingPool facade and its invariants
"""

import pytest
from decimal import Decimal

from ancient_lending import (
    InvalidAmount, InvalidState, InsufficientShares, InsufficientBalance, Unauthorized, SYSTEM_WALLET,
)
from ancient_lending.units import (
    StakingPoolTerms, StakingPoolState,
    load_staking_pool, calculate_exchange_rate, calculate_shares_for_deposit,
    calculate_assets_for_withdrawal, calculate_deposit, calculate_withdrawal,
    calculate_inflow, calculate_pool_metrics,
    compute_deposit, compute_withdraw, compute_receive_interest,
    preview_deposit, staking_pool_transact,
)
from tests.conftest import T0, snapshot


@pytest.fixture
def terms():
    return StakingPoolTerms(
        pool_wallet="staking_pool",
        currency="USDT",
        currency_decimals=6,
        share_decimals=18,
        min_deposit=Decimal("100"),
        management_fee_bps=200,
    )


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

class TestExchangeRate:

    def test_bootstrap_rate_is_one(self):
        assert calculate_exchange_rate(Decimal("0"), Decimal("0")) == Decimal("1")

    def test_rate_after_interest(self):
        assert calculate_exchange_rate(Decimal("1100"), Decimal("1000")) == Decimal("1.1")

    def test_first_deposit_mints_one_to_one(self):
        assert calculate_shares_for_deposit(Decimal("1000"), StakingPoolState(), 18) == Decimal("1000")

    def test_deposit_at_higher_rate_mints_fewer_shares(self):
        state = StakingPoolState(total_assets=Decimal("1100"), total_shares=Decimal("1000"))
        assert calculate_shares_for_deposit(Decimal("1100"), state, 18) == Decimal("1000")

    def test_shares_round_down(self):
        state = StakingPoolState(total_assets=Decimal("3"), total_shares=Decimal("1"))
        shares = calculate_shares_for_deposit(Decimal("1"), state, 18)
        assert shares == Decimal("0.333333333333333333")
        assert shares * 3 < 1

    def test_shares_outstanding_without_assets(self):
        state = StakingPoolState(total_assets=Decimal("0"), total_shares=Decimal("10"))
        with pytest.raises(InvalidState):
            calculate_shares_for_deposit(Decimal("100"), state, 18)

    def test_withdrawal_amount_rounds_down(self):
        state = StakingPoolState(total_assets=Decimal("100"), total_shares=Decimal("3"))
        assert calculate_assets_for_withdrawal(Decimal("1"), state, 6) == Decimal("33.333333")


class TestDepositAndWithdrawal:

    def test_deposit_updates_totals(self, terms):
        shares, state = calculate_deposit(terms, StakingPoolState(), Decimal("1000"))
        assert shares == Decimal("1000")
        assert state.total_assets == Decimal("1000")
        assert state.total_shares == Decimal("1000")

    def test_deposit_below_minimum(self, terms):
        with pytest.raises(InvalidAmount, match="minimum"):
            calculate_deposit(terms, StakingPoolState(), Decimal("99.999999"))

    def test_deposit_at_minimum_accepted(self, terms):
        shares, _ = calculate_deposit(terms, StakingPoolState(), Decimal("100"))
        assert shares == Decimal("100")

    def test_withdraw_more_than_held(self, terms):
        state = StakingPoolState(total_assets=Decimal("1000"), total_shares=Decimal("1000"))
        with pytest.raises(InsufficientShares):
            calculate_withdrawal(terms, state, Decimal("501"), holder_balance=Decimal("500"))

    def test_withdraw_more_than_outstanding(self, terms):
        state = StakingPoolState(total_assets=Decimal("1000"), total_shares=Decimal("1000"))
        with pytest.raises(InsufficientShares):
            calculate_withdrawal(terms, state, Decimal("1001"), holder_balance=Decimal("2000"))

    def test_dust_withdrawal_rejected(self, terms):
        state = StakingPoolState(total_assets=Decimal("1000"), total_shares=Decimal("1000"))
        with pytest.raises(InvalidAmount):
            calculate_withdrawal(terms, state, Decimal("1e-9"), holder_balance=Decimal("1000"))

    def test_full_withdrawal(self, terms):
        state = StakingPoolState(total_assets=Decimal("1100"), total_shares=Decimal("1000"))
        amount, new_state = calculate_withdrawal(terms, state, Decimal("1000"), Decimal("1000"))
        assert amount == Decimal("1100")
        assert new_state.total_assets == Decimal("0")
        assert new_state.total_shares == Decimal("0")


class TestInflows:

    def test_interest_raises_assets_not_shares(self):
        state = StakingPoolState(total_assets=Decimal("1000"), total_shares=Decimal("1000"))
        new_state = calculate_inflow(state, Decimal("100"), "INTEREST")
        assert new_state.total_assets == Decimal("1100")
        assert new_state.total_shares == Decimal("1000")
        assert new_state.total_interest_received == Decimal("100")
        assert calculate_pool_metrics(new_state).exchange_rate == Decimal("1.1")

    def test_appreciation_tracked_separately(self):
        new_state = calculate_inflow(StakingPoolState(), Decimal("50"), "APPRECIATION")
        assert new_state.total_appreciation_received == Decimal("50")
        assert new_state.total_interest_received == Decimal("0")

    def test_non_positive_inflow(self):
        with pytest.raises(InvalidAmount):
            calculate_inflow(StakingPoolState(), Decimal("0"), "INTEREST")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            calculate_inflow(StakingPoolState(), Decimal("1"), "DIVIDEND")


# ============================================================================
# COMPUTE FUNCTIONS
# ============================================================================

class TestComputeFunctions:

    def test_load_from_view(self, pool_view):
        terms, state = load_staking_pool(pool_view, "ASP")
        assert terms.pool_wallet == "staking_pool"
        assert state.total_assets == Decimal("1100")

    def test_load_non_pool_unit(self, pool_view):
        with pytest.raises(InvalidState):
            load_staking_pool(pool_view, "USDT")

    def test_deposit_moves_and_event(self, pool_view):
        tx = compute_deposit(pool_view, "ASP", "carol", Decimal("1100"), "op-1")
        usdt, shares = tx.moves
        assert (usdt.source, usdt.dest, usdt.quantity) == ("carol", "staking_pool", Decimal("1100"))
        assert (shares.source, shares.dest, shares.quantity) == (SYSTEM_WALLET, "carol", Decimal("1000"))
        assert tx.state_changes[0].new_state['total_assets'] == Decimal("2200")
        assert tx.events[0].name == "Deposited"
        assert tx.events[0]["shares_minted"] == Decimal("1000")

    def test_deposit_insufficient_balance(self, pool_view):
        with pytest.raises(InsufficientBalance):
            compute_deposit(pool_view, "ASP", "bob", Decimal("600"), "op-1")

    def test_withdraw_moves_and_event(self, pool_view):
        tx = compute_withdraw(pool_view, "ASP", "bob", Decimal("500"), "op-1")
        burn, payout = tx.moves
        assert (burn.source, burn.dest) == ("bob", SYSTEM_WALLET)
        assert (payout.source, payout.dest, payout.quantity) == ("staking_pool", "bob", Decimal("550"))
        assert tx.events[0]["shares_burned"] == Decimal("500")

    def test_withdraw_without_shares(self, pool_view):
        with pytest.raises(InsufficientShares):
            compute_withdraw(pool_view, "ASP", "carol", Decimal("1"), "op-1")

    def test_interest_from_pool_itself_rejected(self, pool_view):
        with pytest.raises(InvalidAmount):
            compute_receive_interest(pool_view, "ASP", "staking_pool", Decimal("1"), "op-1")

    def test_deposit_from_pool_wallet_rejected(self, pool_view):
        with pytest.raises(Unauthorized):
            compute_deposit(pool_view, "ASP", "staking_pool", Decimal("100"), "op-1")

    def test_interest_from_unknown_wallet(self, pool_view):
        with pytest.raises(InsufficientBalance):
            compute_receive_interest(pool_view, "ASP", "ghost", Decimal("10"), "op-1")

    def test_preview_deposit(self, pool_view):
        assert preview_deposit(pool_view, "ASP", "550") == Decimal("500")

    def test_transact_dispatch(self, pool_view):
        tx = staking_pool_transact(pool_view, "ASP", "INTEREST", T0, source="carol", amount=Decimal("10"))
        assert tx.events[0].name == "InterestReceived"

    def test_transact_missing_parameter(self, pool_view):
        with pytest.raises(ValueError, match="Missing 'user'"):
            staking_pool_transact(pool_view, "ASP", "DEPOSIT", T0, amount=Decimal("10"))


# ============================================================================
# FACADE
# ============================================================================

class TestStakingPoolFacade:

    def test_deposit_interest_deposit(self, funded_protocol):
        pool = funded_protocol.pool
        assert pool.deposit("bob", Decimal("1000")) == Decimal("1000")
        assert pool.exchange_rate() == Decimal("1")

        pool.receive_interest("carol", Decimal("100"))
        assert pool.exchange_rate() == Decimal("1.1")

        assert pool.deposit("carol", Decimal("1100")) == Decimal("1000")
        metrics = pool.get_pool_metrics()
        assert metrics.total_assets == Decimal("2200")
        assert metrics.total_shares == Decimal("2000")
        assert metrics.total_interest_received == Decimal("100")
        assert funded_protocol.verify_invariants() == []

    def test_withdraw_returns_amount(self, funded_protocol):
        pool = funded_protocol.pool
        pool.deposit("bob", Decimal("1000"))
        pool.receive_interest("carol", Decimal("100"))
        assert pool.withdraw("bob", Decimal("1000")) == Decimal("1100")
        assert funded_protocol.token.balance_of("bob") == Decimal("10100")
        assert pool.balance_of("bob") == Decimal("0")
        assert pool.total_supply() == Decimal("0")

    def test_withdraw_more_than_held(self, funded_protocol):
        funded_protocol.pool.deposit("bob", Decimal("1000"))
        with pytest.raises(InsufficientShares):
            funded_protocol.pool.withdraw("bob", Decimal("1000.5"))

    def test_deposit_below_minimum(self, funded_protocol):
        with pytest.raises(InvalidAmount):
            funded_protocol.pool.deposit("bob", Decimal("50"))
        assert funded_protocol.events_named("Deposited") == []

    def test_preview_matches_deposit(self, funded_protocol):
        pool = funded_protocol.pool
        pool.deposit("bob", Decimal("1000"))
        pool.receive_interest("carol", Decimal("333"))
        preview = pool.preview_deposit(Decimal("777"))
        assert pool.deposit("carol", Decimal("777")) == preview

    def test_events(self, funded_protocol):
        funded_protocol.pool.deposit("bob", Decimal("1000"))
        funded_protocol.pool.receive_interest("carol", Decimal("100"))
        names = [e.name for e in funded_protocol.events]
        assert names[-2:] == ["Deposited", "InterestReceived"]

    @pytest.mark.parametrize("wallet", ["staking_pool", SYSTEM_WALLET])
    def test_protocol_wallet_cannot_deposit(self, funded_protocol, wallet):
        funded_protocol.pool.deposit("bob", Decimal("1000"))
        before = snapshot(funded_protocol)
        with pytest.raises(Unauthorized):
            funded_protocol.pool.deposit(wallet, Decimal("100"))
        assert snapshot(funded_protocol) == before
        assert funded_protocol.verify_invariants() == []

    def test_interest_from_unregistered_wallet(self, funded_protocol):
        funded_protocol.pool.deposit("bob", Decimal("1000"))
        with pytest.raises(InsufficientBalance):
            funded_protocol.pool.receive_interest("ghost", Decimal("10"))
        assert funded_protocol.pool.get_pool_metrics().total_interest_received == Decimal("0")
