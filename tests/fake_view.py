"""
fake_view.py - Test Helper for LedgerView

Provides a minimal LedgerView implementation for testing compute and
calculate functions without requiring a full Ledger instance.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, Set, Optional, Any

from ancient_lending.core import Unit


# Type aliases (matching core.py)
Positions = Dict[str, Decimal]
UnitState = Dict[str, Any]


class FakeUnit:
    """Minimal Unit for testing - provides balance limits and precision."""
    def __init__(self, symbol: str, decimal_places: int = 6,
                 min_balance: Decimal = Decimal("0"), max_balance: Decimal = Decimal("Infinity")):
        self.symbol = symbol
        self.decimal_places = decimal_places
        self.min_balance = min_balance
        self.max_balance = max_balance


class FakeView:
    """
    Minimal LedgerView implementation for testing compute functions.

    Example:
        view = FakeView(
            balances={'alice': {'USDT': Decimal("1000")}},
            states={'ASP': {'pool_wallet': 'staking_pool', ...}},
            time=datetime(2025, 1, 1)
        )

        positions = view.get_positions('USDT')
        # Returns: {'alice': Decimal('1000')}
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, Decimal]],
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
        units: Optional[Dict[str, Unit]] = None
    ):
        self._balances = balances
        self._states = states or {}
        self._time = time or datetime(2025, 1, 1)
        self._units = units or {}

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        if unit in self._states:
            return dict(self._states[unit])
        if unit in self._units:
            return self._units[unit].state
        return {}

    def get_positions(self, unit: str) -> Positions:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def get_unit(self, symbol: str) -> Any:
        """Return the unit, or a FakeUnit with settlement-token precision."""
        if symbol in self._units:
            return self._units[symbol]
        return FakeUnit(symbol)
