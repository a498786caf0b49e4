"""
conftest.py - Shared pytest fixtures for Ancient Lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, USDT-ready, funded)
- Protocol instances (fresh, funded, with an open mortgage)
- FakeView fixtures for pure compute functions
- Comparison utilities
"""

import pytest
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from ancient_lending import (
    Ledger, LendingProtocol, ProtocolConfig,
    stablecoin, SYSTEM_WALLET,
)
from ancient_lending.units import create_staking_pool_unit

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def ledger_state_equals(ledger1: Ledger, ledger2: Ledger, tolerance: Decimal = None) -> bool:
    """Check if two ledgers have equivalent state (balances and unit states)."""
    return compare_ledger_states(ledger1, ledger2, tolerance)["equal"]


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger, tolerance: Decimal = None) -> dict:
    """Compare two ledger states and return differences."""
    if tolerance is None:
        tolerance = Decimal("1e-12")
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if abs(bal1 - bal2) > tolerance:
                balance_diffs.append({
                    "wallet": wallet,
                    "unit": unit,
                    "ledger1": bal1,
                    "ledger2": bal2,
                    "diff": bal1 - bal2
                })

    for unit_sym in all_units:
        if unit_sym not in ledger1.units or unit_sym not in ledger2.units:
            state_diffs.append({"unit": unit_sym, "diffs": "missing"})
            continue
        state1 = ledger1.get_unit_state(unit_sym)
        state2 = ledger2.get_unit_state(unit_sym)
        field_diffs = {
            key: {"ledger1": state1.get(key), "ledger2": state2.get(key)}
            for key in set(state1) | set(state2)
            if state1.get(key) != state2.get(key)
        }
        if field_diffs:
            state_diffs.append({"unit": unit_sym, "diffs": field_diffs})

    return {
        "equal": len(balance_diffs) == 0 and len(state_diffs) == 0,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


def snapshot(protocol: LendingProtocol) -> Tuple:
    """Everything a rejected operation must leave untouched."""
    ledger = protocol.ledger
    balances = {
        wallet: dict(bals) for wallet, bals in ledger.balances.items()
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.units}
    return (
        balances,
        states,
        len(ledger.transaction_log),
        len(ledger.event_log),
        protocol.mortgages.token_ids(),
    )


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def ledger():
    """Ledger with USDT and two wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(stablecoin("USDT", "Tether USD", decimal_places=6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(ledger):
    """USDT ledger with alice holding 10,000 issued from the system wallet."""
    ledger.set_balance("alice", "USDT", Decimal("10000"))
    ledger.set_balance(SYSTEM_WALLET, "USDT", Decimal("-10000"))
    return ledger


@pytest.fixture
def pool_ledger(funded_ledger):
    """Funded ledger with an empty ASP staking pool."""
    funded_ledger.register_wallet("staking_pool")
    funded_ledger.register_unit(create_staking_pool_unit(
        "ASP", "Ancient Staking Pool Share", "staking_pool", "USDT", Decimal("100"),
    ))
    return funded_ledger


# =============================================================================
# PROTOCOL FIXTURES
# =============================================================================

@pytest.fixture
def config():
    return ProtocolConfig()


@pytest.fixture
def protocol(config):
    """Fresh protocol with the default economic parameters."""
    return LendingProtocol(config, initial_time=T0)


@pytest.fixture
def funded_protocol(protocol):
    """Protocol with alice (borrower), bob and carol (stakers) funded via the faucet."""
    protocol.token.mint("alice", Decimal("100000"))
    protocol.token.mint("bob", Decimal("10000"))
    protocol.token.mint("carol", Decimal("10000"))
    return protocol


@pytest.fixture
def mortgage_protocol(funded_protocol):
    """Funded protocol where alice has bought a $150,000 property (token 1)."""
    token_id = funded_protocol.mortgages.purchase_property("alice", Decimal("150000"))
    assert token_id == 1
    return funded_protocol


@pytest.fixture
def short_term_protocol():
    """Three-month mortgages, so a full term fits in a test."""
    protocol = LendingProtocol(ProtocolConfig(term_months=3), initial_time=T0)
    protocol.token.mint("alice", Decimal("200000"))
    protocol.mortgages.purchase_property("alice", Decimal("150000"))
    return protocol


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def usdt():
    return stablecoin("USDT", "Tether USD", decimal_places=6)


@pytest.fixture
def token_view(usdt):
    """FakeView over a USDT unit with alice holding 1,000."""
    return FakeView(
        balances={
            "alice": {"USDT": Decimal("1000")},
            "bob": {},
        },
        units={"USDT": usdt},
        time=T0,
    )


@pytest.fixture
def pool_view(usdt):
    """FakeView over a pool with 1,100 assets and 1,000 shares held by bob."""
    pool = create_staking_pool_unit(
        "ASP", "Ancient Staking Pool Share", "staking_pool", "USDT", Decimal("100"),
    )
    state = pool.state
    state.update({
        'total_assets': Decimal("1100"),
        'total_shares': Decimal("1000"),
        'total_interest_received': Decimal("100"),
    })
    return FakeView(
        balances={
            "bob": {"ASP": Decimal("1000"), "USDT": Decimal("500")},
            "carol": {"USDT": Decimal("5000")},
            "staking_pool": {"USDT": Decimal("1100")},
        },
        states={"ASP": state},
        units={"USDT": usdt, "ASP": pool},
        time=T0,
    )
