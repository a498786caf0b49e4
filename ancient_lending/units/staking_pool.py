"""
staking_pool.py - Share-Based Staking Pool Accounting

This module provides the staking pool unit and its lifecycle processing using
a pure function architecture with explicit inputs.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - StakingPoolTerms: Immutable pool configuration (set at creation)
   - StakingPoolState: Immutable accounting snapshot (changes on every event)
   - PoolMetrics: Read-only projection returned to callers

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_staking_pool):
   - Extract terms and state from LedgerView once

4. CONVENIENCE FUNCTIONS (compute_*):
   - Combine loading + pure calculation + result building
   - Return a PendingTransaction (moves, state change, events)

The pool share unit doubles as the pool record: its balances are the share
holdings and its unit state carries the totals. Shares are minted from and
burned into the system wallet; assets sit in the pool wallet.

Key Formulas:
    exchange_rate = total_assets / total_shares      (1 when total_shares == 0)
    shares_minted = amount                            (total_shares == 0)
                  = floor(amount * total_shares / total_assets)
    amount_returned = floor(shares * total_assets / total_shares)

Both floors favour the pool, so no deposit or withdrawal lowers the
exchange rate, and inflows raise it without minting shares.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, ProtocolEvent, Unit, UnitStateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET, UNIT_TYPE_POOL_SHARE,
    InvalidAmount, InvalidState, InsufficientBalance, InsufficientShares, Unauthorized,
    build_transaction, quantize, to_decimal, _freeze_state,
)
from .token import parse_amount


INFLOW_INTEREST = "INTEREST"
INFLOW_APPRECIATION = "APPRECIATION"


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class StakingPoolTerms:
    """
    Immutable pool configuration - set at creation, never changes.
    """
    pool_wallet: str            # Custody wallet of pool assets
    currency: str               # Settlement asset symbol
    currency_decimals: int      # Settlement asset precision
    share_decimals: int         # Pool share precision
    min_deposit: Decimal        # Minimum deposit in settlement units
    management_fee_bps: int     # Informational; fee is taken on mortgage interest routing

    def __post_init__(self):
        if not isinstance(self.min_deposit, Decimal):
            object.__setattr__(self, 'min_deposit', to_decimal(self.min_deposit))


@dataclass(frozen=True, slots=True)
class StakingPoolState:
    """
    Immutable snapshot of pool accounting.

    Each event produces a NEW instance.
    """
    total_assets: Decimal = Decimal("0")
    total_shares: Decimal = Decimal("0")
    total_interest_received: Decimal = Decimal("0")
    total_appreciation_received: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ('total_assets', 'total_shares', 'total_interest_received',
                     'total_appreciation_received'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))


@dataclass(frozen=True, slots=True)
class PoolMetrics:
    """Read-only projection of the pool (getPoolMetrics)."""
    total_assets: Decimal
    total_shares: Decimal
    exchange_rate: Decimal
    total_interest_received: Decimal
    total_appreciation_received: Decimal

    def as_tuple(self) -> Tuple[Decimal, Decimal, Decimal, Decimal, Decimal]:
        return (self.total_assets, self.total_shares, self.exchange_rate,
                self.total_interest_received, self.total_appreciation_received)


# ============================================================================
# ADAPTERS
# ============================================================================

def load_staking_pool(view: LedgerView, symbol: str) -> Tuple[StakingPoolTerms, StakingPoolState]:
    """
    Load the pool from ledger state as typed frozen dataclasses.

    Example:
        terms, state = load_staking_pool(view, "ASP")
        shares = calculate_shares_for_deposit(Decimal("1000"), state, terms.share_decimals)
    """
    raw = view.get_unit_state(symbol)
    if 'pool_wallet' not in raw:
        raise InvalidState(f"{symbol} is not a staking pool unit")

    terms = StakingPoolTerms(
        pool_wallet=raw['pool_wallet'],
        currency=raw['currency'],
        currency_decimals=raw['currency_decimals'],
        share_decimals=raw['share_decimals'],
        min_deposit=raw['min_deposit'],
        management_fee_bps=raw.get('management_fee_bps', 0),
    )
    state = StakingPoolState(
        total_assets=raw.get('total_assets', Decimal("0")),
        total_shares=raw.get('total_shares', Decimal("0")),
        total_interest_received=raw.get('total_interest_received', Decimal("0")),
        total_appreciation_received=raw.get('total_appreciation_received', Decimal("0")),
    )
    return terms, state


def to_state_dict(terms: StakingPoolTerms, state: StakingPoolState) -> Dict[str, Any]:
    """Convert terms and state back to the unit state dictionary."""
    return {
        'pool_wallet': terms.pool_wallet,
        'currency': terms.currency,
        'currency_decimals': terms.currency_decimals,
        'share_decimals': terms.share_decimals,
        'min_deposit': terms.min_deposit,
        'management_fee_bps': terms.management_fee_bps,
        'total_assets': state.total_assets,
        'total_shares': state.total_shares,
        'total_interest_received': state.total_interest_received,
        'total_appreciation_received': state.total_appreciation_received,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_exchange_rate(total_assets: Decimal, total_shares: Decimal) -> Decimal:
    """
    Assets per share. The bootstrap rate on a pool without shares is 1.

    Not quantized, so 1100 / 1000 == Decimal("1.1").
    """
    if total_shares == 0:
        return Decimal("1")
    return total_assets / total_shares


def calculate_shares_for_deposit(amount: Decimal, state: StakingPoolState, share_decimals: int) -> Decimal:
    """
    Shares minted for a deposit of amount at the current exchange rate.

    Raises:
        InvalidState: If shares are outstanding but the pool holds no assets
    """
    if state.total_shares == 0:
        return quantize(amount, share_decimals)
    if state.total_assets <= 0:
        raise InvalidState("pool has outstanding shares but no assets")
    return quantize(amount * state.total_shares / state.total_assets, share_decimals)


def calculate_assets_for_withdrawal(shares: Decimal, state: StakingPoolState, currency_decimals: int) -> Decimal:
    """Settlement amount returned for burning shares at the current exchange rate."""
    if state.total_shares == 0:
        return Decimal("0")
    return quantize(shares * state.total_assets / state.total_shares, currency_decimals)


def calculate_deposit(
    terms: StakingPoolTerms,
    state: StakingPoolState,
    amount: Decimal,
) -> Tuple[Decimal, StakingPoolState]:
    """
    Apply a deposit to the pool accounting.

    Returns:
        (shares_minted, new_state)

    Raises:
        InvalidAmount: Below min_deposit, or too small to mint any share
    """
    if amount < terms.min_deposit:
        raise InvalidAmount(f"deposit {amount} is below the minimum {terms.min_deposit}")
    shares = calculate_shares_for_deposit(amount, state, terms.share_decimals)
    if shares <= 0:
        raise InvalidAmount(f"deposit {amount} is too small to mint a share")
    new_state = StakingPoolState(
        total_assets=state.total_assets + amount,
        total_shares=state.total_shares + shares,
        total_interest_received=state.total_interest_received,
        total_appreciation_received=state.total_appreciation_received,
    )
    return shares, new_state


def calculate_withdrawal(
    terms: StakingPoolTerms,
    state: StakingPoolState,
    shares: Decimal,
    holder_balance: Decimal,
) -> Tuple[Decimal, StakingPoolState]:
    """
    Apply a withdrawal (share burn) to the pool accounting.

    Returns:
        (amount_returned, new_state)

    Raises:
        InsufficientShares: shares exceed the holder's balance or the total
        InvalidAmount: The burn is too small to return any settlement units
    """
    if shares > holder_balance:
        raise InsufficientShares(f"cannot burn {shares} shares, holder has {holder_balance}")
    if shares > state.total_shares:
        raise InsufficientShares(f"cannot burn {shares} shares, only {state.total_shares} outstanding")
    amount = calculate_assets_for_withdrawal(shares, state, terms.currency_decimals)
    if amount <= 0:
        raise InvalidAmount(f"burning {shares} shares returns nothing")
    new_state = StakingPoolState(
        total_assets=state.total_assets - amount,
        total_shares=state.total_shares - shares,
        total_interest_received=state.total_interest_received,
        total_appreciation_received=state.total_appreciation_received,
    )
    return amount, new_state


def calculate_inflow(state: StakingPoolState, amount: Decimal, kind: str) -> StakingPoolState:
    """
    Add an interest or appreciation inflow. Shares are unchanged.

    Raises:
        InvalidAmount: amount <= 0
        ValueError: Unknown inflow kind
    """
    if amount <= 0:
        raise InvalidAmount(f"inflow amount must be positive, got {amount}")
    if kind == INFLOW_INTEREST:
        return StakingPoolState(
            total_assets=state.total_assets + amount,
            total_shares=state.total_shares,
            total_interest_received=state.total_interest_received + amount,
            total_appreciation_received=state.total_appreciation_received,
        )
    if kind == INFLOW_APPRECIATION:
        return StakingPoolState(
            total_assets=state.total_assets + amount,
            total_shares=state.total_shares,
            total_interest_received=state.total_interest_received,
            total_appreciation_received=state.total_appreciation_received + amount,
        )
    raise ValueError(f"Unknown inflow kind '{kind}'")


def calculate_pool_metrics(state: StakingPoolState) -> PoolMetrics:
    return PoolMetrics(
        total_assets=state.total_assets,
        total_shares=state.total_shares,
        exchange_rate=calculate_exchange_rate(state.total_assets, state.total_shares),
        total_interest_received=state.total_interest_received,
        total_appreciation_received=state.total_appreciation_received,
    )


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_staking_pool_unit(
    symbol: str,
    name: str,
    pool_wallet: str,
    currency: str,
    min_deposit: Decimal,
    management_fee_bps: int = 0,
    currency_decimals: int = 6,
    share_decimals: int = 18,
) -> Unit:
    """
    Create the pool share unit with empty pool accounting.

    Share balances may not go negative outside the system wallet.

    Example:
        pool = create_staking_pool_unit("ASP", "Ancient Staking Pool Share",
                                        "staking_pool", "USDT", Decimal("100"))
        ledger.register_unit(pool)
    """
    terms = StakingPoolTerms(
        pool_wallet=pool_wallet,
        currency=currency,
        currency_decimals=currency_decimals,
        share_decimals=share_decimals,
        min_deposit=min_deposit,
        management_fee_bps=management_fee_bps,
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_POOL_SHARE,
        min_balance=Decimal("0"),
        decimal_places=share_decimals,
        _frozen_state=_freeze_state(to_state_dict(terms, StakingPoolState())),
    )


# ============================================================================
# QUERIES
# ============================================================================

def get_pool_metrics(view: LedgerView, symbol: str) -> PoolMetrics:
    _, state = load_staking_pool(view, symbol)
    return calculate_pool_metrics(state)


def share_balance(view: LedgerView, symbol: str, holder: str) -> Decimal:
    if holder not in view.list_wallets():
        return Decimal("0")
    return view.get_balance(holder, symbol)


def preview_deposit(view: LedgerView, symbol: str, amount: Any) -> Decimal:
    """Shares a deposit of amount would mint now (no minimum check)."""
    terms, state = load_staking_pool(view, symbol)
    amount = parse_amount(amount, terms.currency_decimals)
    return calculate_shares_for_deposit(amount, state, terms.share_decimals)


def preview_withdraw(view: LedgerView, symbol: str, shares: Any) -> Decimal:
    """Settlement amount burning shares would return now."""
    terms, state = load_staking_pool(view, symbol)
    shares = parse_amount(shares, terms.share_decimals, name="shares")
    return calculate_assets_for_withdrawal(shares, state, terms.currency_decimals)


def check_pool_invariants(view: LedgerView, symbol: str) -> List[str]:
    """
    Return the list of violated pool invariants (empty when consistent).

    total_assets must equal the pool wallet's settlement balance and
    total_shares must equal the sum of holder share balances.
    """
    terms, state = load_staking_pool(view, symbol)
    problems = []
    custody = view.get_balance(terms.pool_wallet, terms.currency)
    if custody != state.total_assets:
        problems.append(f"total_assets {state.total_assets} != custody balance {custody}")
    held = sum(
        (qty for wallet, qty in view.get_positions(symbol).items() if wallet != SYSTEM_WALLET),
        Decimal("0"),
    )
    if held != state.total_shares:
        problems.append(f"total_shares {state.total_shares} != held shares {held}")
    return problems


# ============================================================================
# COMPUTE FUNCTIONS
# ============================================================================

def _origin(caller: str, symbol: str, event_type: str, op_id: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=f"{caller}#{op_id}",
        unit_symbol=symbol,
        event_type=event_type,
    )


def build_inflow(
    view: LedgerView,
    symbol: str,
    source: str,
    amount: Decimal,
    kind: str,
    op_id: str,
) -> Tuple[List[Move], List[UnitStateChange], List[ProtocolEvent]]:
    """
    Moves, state change and event for an inflow, for embedding in a larger
    transaction (a mortgage payment routes its interest through here).
    """
    terms, state = load_staking_pool(view, symbol)
    new_state = calculate_inflow(state, amount, kind)
    old_raw = view.get_unit_state(symbol)
    moves = [Move(amount, terms.currency, source, terms.pool_wallet, f"pool_{kind.lower()}_{op_id}")]
    changes = [UnitStateChange(unit=symbol, old_state=old_raw, new_state=to_state_dict(terms, new_state))]
    event_name = "InterestReceived" if kind == INFLOW_INTEREST else "AppreciationReceived"
    events = [ProtocolEvent.of(event_name, amount=amount)]
    return moves, changes, events


def _compute_receive(
    view: LedgerView, symbol: str, source: str, amount: Any, kind: str, op_id: str,
) -> PendingTransaction:
    terms, _ = load_staking_pool(view, symbol)
    amount = parse_amount(amount, terms.currency_decimals)
    if source == terms.pool_wallet:
        raise InvalidAmount("pool cannot pay an inflow to itself")
    if source != SYSTEM_WALLET:
        available = view.get_balance(source, terms.currency) if source in view.list_wallets() else Decimal("0")
        if available < amount:
            raise InsufficientBalance(f"{source} holds {available} {terms.currency}, needs {amount}")
    moves, changes, events = build_inflow(view, symbol, source, amount, kind, op_id)
    return build_transaction(view, moves, changes, origin=_origin(source, symbol, kind, op_id), events=events)


def compute_receive_interest(
    view: LedgerView, symbol: str, source: str, amount: Any, op_id: str = "interest",
) -> PendingTransaction:
    """
    Interest inflow from source: assets and total_interest_received grow.

    Raises:
        InvalidAmount: amount <= 0
        InsufficientBalance: source cannot fund the inflow
    """
    return _compute_receive(view, symbol, source, amount, INFLOW_INTEREST, op_id)


def compute_receive_appreciation(
    view: LedgerView, symbol: str, source: str, amount: Any, op_id: str = "appreciation",
) -> PendingTransaction:
    """Appreciation inflow from source: assets and total_appreciation_received grow."""
    return _compute_receive(view, symbol, source, amount, INFLOW_APPRECIATION, op_id)


def compute_deposit(
    view: LedgerView,
    symbol: str,
    user: str,
    amount: Any,
    op_id: str = "deposit",
) -> PendingTransaction:
    """
    Deposit settlement units and mint shares at the current exchange rate.

    Returns:
        PendingTransaction with:
        - moves: currency user -> pool wallet, shares system -> user
        - state_changes: total_assets and total_shares increased
        - events: Deposited(user, amount, shares_minted)

    Raises:
        InvalidAmount: Malformed amount or below min_deposit
        InsufficientBalance: user holds less than amount
        Unauthorized: user is the system wallet or the pool wallet

    Example:
        tx = compute_deposit(ledger, "ASP", "alice", Decimal("1000"), op_id="op-1")
        ledger.execute(tx)
    """
    terms, state = load_staking_pool(view, symbol)
    amount = parse_amount(amount, terms.currency_decimals)
    if user in (SYSTEM_WALLET, terms.pool_wallet):
        raise Unauthorized(f"protocol wallet {user} cannot deposit into {symbol}")
    shares, new_state = calculate_deposit(terms, state, amount)

    available = view.get_balance(user, terms.currency) if user in view.list_wallets() else Decimal("0")
    if available < amount:
        raise InsufficientBalance(f"{user} holds {available} {terms.currency}, needs {amount}")

    old_raw = view.get_unit_state(symbol)
    moves = [
        Move(amount, terms.currency, user, terms.pool_wallet, f"deposit_{op_id}"),
        Move(shares, symbol, SYSTEM_WALLET, user, f"deposit_{op_id}"),
    ]
    changes = [UnitStateChange(unit=symbol, old_state=old_raw, new_state=to_state_dict(terms, new_state))]
    events = [ProtocolEvent.of("Deposited", user=user, amount=amount, shares_minted=shares)]
    return build_transaction(view, moves, changes, origin=_origin(user, symbol, "DEPOSIT", op_id), events=events)


def compute_withdraw(
    view: LedgerView,
    symbol: str,
    user: str,
    shares: Any,
    op_id: str = "withdraw",
) -> PendingTransaction:
    """
    Burn shares and return settlement units at the current exchange rate.

    Raises:
        InvalidAmount: Malformed or non-positive shares
        InsufficientShares: shares exceed the user's balance or the total
    """
    terms, state = load_staking_pool(view, symbol)
    shares = parse_amount(shares, terms.share_decimals, name="shares")
    holder_balance = share_balance(view, symbol, user)
    amount, new_state = calculate_withdrawal(terms, state, shares, holder_balance)

    old_raw = view.get_unit_state(symbol)
    moves = [
        Move(shares, symbol, user, SYSTEM_WALLET, f"withdraw_{op_id}"),
        Move(amount, terms.currency, terms.pool_wallet, user, f"withdraw_{op_id}"),
    ]
    changes = [UnitStateChange(unit=symbol, old_state=old_raw, new_state=to_state_dict(terms, new_state))]
    events = [ProtocolEvent.of("Withdrawn", user=user, amount=amount, shares_burned=shares)]
    return build_transaction(view, moves, changes, origin=_origin(user, symbol, "WITHDRAW", op_id), events=events)


def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    event_date: datetime,
    **kwargs
) -> PendingTransaction:
    """
    Generate the transaction for a staking pool event.

    Args:
        view: Read-only ledger access
        symbol: Pool share symbol
        event_type: DEPOSIT (user, amount), WITHDRAW (user, shares),
            INTEREST (source, amount) or APPRECIATION (source, amount)
        event_date: When the event occurs
        **kwargs: Event-specific parameters, plus an optional op_id

    Raises:
        ValueError: Unknown event type or missing parameter
    """
    op_id = kwargs.get('op_id', event_date.isoformat())

    def need(name: str) -> Any:
        value = kwargs.get(name)
        if value is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
        return value

    if event_type == 'DEPOSIT':
        return compute_deposit(view, symbol, need('user'), need('amount'), op_id)
    elif event_type == 'WITHDRAW':
        return compute_withdraw(view, symbol, need('user'), need('shares'), op_id)
    elif event_type == INFLOW_INTEREST:
        return compute_receive_interest(view, symbol, need('source'), need('amount'), op_id)
    elif event_type == INFLOW_APPRECIATION:
        return compute_receive_appreciation(view, symbol, need('source'), need('amount'), op_id)
    else:
        raise ValueError(f"Unknown event type '{event_type}' for staking pool {symbol}")
