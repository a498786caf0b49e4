"""
token.py - Settlement Asset (ERC20-like stablecoin)

Pure functions over the stablecoin unit that settles every protocol payment.
Balances live in the ledger; allowances live in the unit state as
{owner: {spender: amount}}.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (parse_amount, calculate_*):
   - Validate and normalize amounts at the asset precision
   - No LedgerView, no hidden state

2. ADAPTER FUNCTIONS (get_allowance, get_balance):
   - Read balances and allowances from a LedgerView

3. COMPUTE FUNCTIONS (compute_*):
   - Return a PendingTransaction with moves, allowance state changes and
     Transfer / Approval events
   - Raise InsufficientBalance / InsufficientAllowance before anything executes

Every compute function takes an op_id allocated by the caller. It is folded
into the contract ids and the transaction origin, so two identical transfers
are two distinct intents and both apply.
"""

from __future__ import annotations
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict

from ..core import (
    LedgerView, Move, PendingTransaction, ProtocolEvent, Unit, UnitStateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET,
    InvalidAmount, InsufficientBalance, InsufficientAllowance,
    build_transaction, is_representable, stablecoin, to_decimal,
)


# ============================================================================
# AMOUNT VALIDATION
# ============================================================================

def parse_amount(value: Any, decimal_places: int, name: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    Convert and validate a user-supplied amount.

    Args:
        value: int, str, float or Decimal
        decimal_places: Precision the amount must be representable at
        name: Label used in error messages
        allow_zero: Accept zero (used by approve to revoke an allowance)

    Returns:
        The amount as a Decimal

    Raises:
        InvalidAmount: If the value is not numeric, not finite, not positive
            (or negative when allow_zero), or carries more digits than
            decimal_places.
    """
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError, ArithmeticError) as e:
        raise InvalidAmount(f"{name} must be numeric, got {value!r}") from e
    if not amount.is_finite():
        raise InvalidAmount(f"{name} must be finite, got {amount}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"{name} must be positive, got {amount}")
    if not is_representable(amount, decimal_places):
        raise InvalidAmount(f"{name} {amount} exceeds {decimal_places} decimal places")
    return amount


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_settlement_token(symbol: str = "USDT", name: str = "Tether USD", decimal_places: int = 6) -> Unit:
    """Create the stablecoin unit the protocol settles in."""
    return stablecoin(symbol, name, decimal_places=decimal_places)


# ============================================================================
# READ ADAPTERS
# ============================================================================

def get_balance(view: LedgerView, symbol: str, owner: str) -> Decimal:
    """Balance of owner, zero for unknown wallets."""
    if owner not in view.list_wallets():
        return Decimal("0")
    return view.get_balance(owner, symbol)


def get_allowance(view: LedgerView, symbol: str, owner: str, spender: str) -> Decimal:
    """Amount spender may still move out of owner's wallet via transfer_from."""
    allowances = view.get_unit_state(symbol).get('allowances', {})
    return to_decimal(allowances.get(owner, {}).get(spender, Decimal("0")))


def _with_allowance(state: Dict[str, Any], owner: str, spender: str, amount: Decimal) -> Dict[str, Any]:
    allowances = {o: dict(s) for o, s in state.get('allowances', {}).items()}
    owner_allowances = allowances.setdefault(owner, {})
    if amount == 0:
        owner_allowances.pop(spender, None)
        if not owner_allowances:
            del allowances[owner]
    else:
        owner_allowances[spender] = amount
    return {**state, 'allowances': allowances}


def _require_balance(view: LedgerView, symbol: str, owner: str, amount: Decimal) -> None:
    available = get_balance(view, symbol, owner)
    if available < amount:
        raise InsufficientBalance(
            f"{owner} holds {available} {symbol}, needs {amount}"
        )


def _origin(caller: str, symbol: str, event_type: str, op_id: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.SYSTEM if caller == SYSTEM_WALLET else OriginType.USER_ACTION,
        source_id=f"{caller}#{op_id}",
        unit_symbol=symbol,
        event_type=event_type,
    )


# ============================================================================
# COMPUTE FUNCTIONS
# ============================================================================

def compute_transfer(
    view: LedgerView,
    symbol: str,
    source: str,
    dest: str,
    amount: Any,
    op_id: str = "transfer",
) -> PendingTransaction:
    """
    Move amount from source to dest.

    Raises:
        InvalidAmount: Non-positive or unrepresentable amount, or source == dest
        InsufficientBalance: source holds less than amount
    """
    unit = view.get_unit(symbol)
    amount = parse_amount(amount, unit.decimal_places)
    if source == dest:
        raise InvalidAmount("source and dest must differ")
    _require_balance(view, symbol, source, amount)

    moves = [Move(amount, symbol, source, dest, f"transfer_{op_id}")]
    events = [ProtocolEvent.of("Transfer", source=source, dest=dest, value=amount)]
    return build_transaction(view, moves, origin=_origin(source, symbol, "TRANSFER", op_id), events=events)


def compute_approve(
    view: LedgerView,
    symbol: str,
    owner: str,
    spender: str,
    amount: Any,
    op_id: str = "approve",
) -> PendingTransaction:
    """
    Set spender's allowance over owner's balance to amount (0 revokes).

    Approval does not check the owner's balance, like ERC20.
    """
    unit = view.get_unit(symbol)
    amount = parse_amount(amount, unit.decimal_places, allow_zero=True)
    if owner == spender:
        raise InvalidAmount("owner cannot approve itself")

    old_state = view.get_unit_state(symbol)
    new_state = _with_allowance(old_state, owner, spender, amount)
    changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
    events = [ProtocolEvent.of("Approval", owner=owner, spender=spender, value=amount)]
    return build_transaction(view, [], changes, origin=_origin(owner, symbol, "APPROVE", op_id), events=events)


def compute_transfer_from(
    view: LedgerView,
    symbol: str,
    spender: str,
    source: str,
    dest: str,
    amount: Any,
    op_id: str = "transfer_from",
) -> PendingTransaction:
    """
    Move amount from source to dest on behalf of spender, consuming allowance.

    Raises:
        InvalidAmount: Non-positive or unrepresentable amount
        InsufficientAllowance: spender's allowance from source is below amount
        InsufficientBalance: source holds less than amount
    """
    unit = view.get_unit(symbol)
    amount = parse_amount(amount, unit.decimal_places)
    if source == dest:
        raise InvalidAmount("source and dest must differ")

    allowed = get_allowance(view, symbol, source, spender)
    if allowed < amount:
        raise InsufficientAllowance(
            f"{spender} may move {allowed} {symbol} from {source}, needs {amount}"
        )
    _require_balance(view, symbol, source, amount)

    old_state = view.get_unit_state(symbol)
    new_state = _with_allowance(old_state, source, spender, allowed - amount)
    moves = [Move(amount, symbol, source, dest, f"transfer_from_{op_id}")]
    changes = [UnitStateChange(unit=symbol, old_state=old_state, new_state=new_state)]
    events = [ProtocolEvent.of("Transfer", source=source, dest=dest, value=amount)]
    return build_transaction(
        view, moves, changes, origin=_origin(spender, symbol, "TRANSFER_FROM", op_id), events=events
    )


def compute_mint(
    view: LedgerView,
    symbol: str,
    dest: str,
    amount: Any,
    op_id: str = "mint",
) -> PendingTransaction:
    """Issue new tokens from the system wallet to dest (test faucet)."""
    unit = view.get_unit(symbol)
    amount = parse_amount(amount, unit.decimal_places)
    if dest == SYSTEM_WALLET:
        raise InvalidAmount("cannot mint to the system wallet")
    moves = [Move(amount, symbol, SYSTEM_WALLET, dest, f"mint_{op_id}")]
    events = [ProtocolEvent.of("Transfer", source=SYSTEM_WALLET, dest=dest, value=amount)]
    return build_transaction(view, moves, origin=_origin(SYSTEM_WALLET, symbol, "MINT", op_id), events=events)


def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    event_date: datetime,
    **kwargs
) -> PendingTransaction:
    """
    Generate the transaction for a settlement token event.

    Args:
        view: Read-only ledger access
        symbol: Token symbol
        event_type: TRANSFER, APPROVE, TRANSFER_FROM or MINT
        event_date: When the event occurs
        **kwargs: Event-specific parameters (source, dest, owner, spender, amount, op_id)

    Raises:
        ValueError: Unknown event type or missing parameter
    """
    required = {
        'TRANSFER': ('source', 'dest', 'amount'),
        'APPROVE': ('owner', 'spender', 'amount'),
        'TRANSFER_FROM': ('spender', 'source', 'dest', 'amount'),
        'MINT': ('dest', 'amount'),
    }
    if event_type not in required:
        raise ValueError(f"Unknown event type '{event_type}' for token {symbol}")
    for name in required[event_type]:
        if kwargs.get(name) is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
    op_id = kwargs.get('op_id', event_date.isoformat())

    if event_type == 'TRANSFER':
        return compute_transfer(view, symbol, kwargs['source'], kwargs['dest'], kwargs['amount'], op_id)
    elif event_type == 'APPROVE':
        return compute_approve(view, symbol, kwargs['owner'], kwargs['spender'], kwargs['amount'], op_id)
    elif event_type == 'TRANSFER_FROM':
        return compute_transfer_from(
            view, symbol, kwargs['spender'], kwargs['source'], kwargs['dest'], kwargs['amount'], op_id
        )
    return compute_mint(view, symbol, kwargs['dest'], kwargs['amount'], op_id)
