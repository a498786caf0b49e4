"""
Core types and pure functions for the Ancient Lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, ProtocolEvent, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, ProtocolError and the protocol error kinds
4. Type aliases: Positions, BalanceMap, UnitState
5. Transfer rules: Pure validation functions for moves
6. Unit factories: Functions to create the settlement asset units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All protocol arithmetic is Decimal. The global context is configured once at
# module load time:
#   - prec=50: enough headroom for (1 + r) ** -n over long terms
#   - rounding=ROUND_HALF_EVEN: unbiased default for intermediate results
#
# Amounts that leave a calculation are always quantized explicitly with the
# rounding mode that favours the protocol (see quantize()).
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_STABLECOIN = "STABLECOIN"
UNIT_TYPE_POOL_SHARE = "POOL_SHARE"
UNIT_TYPE_MORTGAGE = "MORTGAGE"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# One basis point expressed as a divisor.
BPS_DENOMINATOR = Decimal("10000")

DECIMAL_ROUNDING = {
    UNIT_TYPE_STABLECOIN: ROUND_DOWN,
    UNIT_TYPE_POOL_SHARE: ROUND_DOWN,
    UNIT_TYPE_MORTGAGE: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (pool accounting, mortgage terms and progress, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Compute functions, transfer rules and query helpers accept a LedgerView
    to declare their read-only intent. The Ledger class implements this
    protocol; tests use FakeView, a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Return the balance of a specific unit in a wallet.

        Returns Decimal("0") if the wallet holds none of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (balance constraints, transfer rules,
              unregistered units or wallets, future timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Borrower / staker initiated
    CONTRACT = "contract"                 # Protocol contract logic
    SYSTEM = "system"                     # Issuance, faucet, initial setup
    EXTERNAL = "external"                 # External system integration


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class ProtocolError(LedgerError):
    """Base exception for rejected mortgage, pool and settlement operations."""
    pass


class InvalidAmount(ProtocolError):
    """Amount is zero, negative, below a minimum or not representable."""
    pass


class InvalidState(ProtocolError):
    """Operation targets a missing or inactive mortgage, or an illegal transition."""
    pass


class AlreadyDistributed(InvalidState):
    """Appreciation for this mortgage has already been distributed."""
    pass


class InsufficientShares(ProtocolError):
    """Withdrawal exceeds the caller's share balance or the outstanding shares."""
    pass


class InsufficientBalance(ProtocolError):
    """Caller does not hold enough of the settlement asset."""
    pass


class InsufficientAllowance(InsufficientBalance):
    """Spender's allowance does not cover a transfer_from."""
    pass


class Unauthorized(ProtocolError):
    """Caller is not permitted to perform the operation."""
    pass


class TransactionRejected(ProtocolError):
    """The ledger rejected a pending transaction during validation."""
    pass


class ConfigurationError(LedgerError):
    """Raised when protocol configuration is invalid."""
    pass


# ============================================================================
# DECIMAL HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal without binary float artefacts.

    Floats go through str() so that 0.1 becomes Decimal("0.1").
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    return Decimal(str(value))


def quantize(value: Decimal, decimal_places: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Quantize value to a fixed number of decimal places."""
    return value.quantize(Decimal(10) ** -decimal_places, rounding=rounding)


def is_representable(value: Decimal, decimal_places: int) -> bool:
    """True if value carries no digits beyond decimal_places."""
    return quantize(value, decimal_places) == value


def bps_of(amount: Decimal, bps: int, decimal_places: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Return amount * bps / 10000, quantized."""
    return quantize(amount * Decimal(bps) / BPS_DENOMINATOR, decimal_places, rounding)


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (wallet, contract name)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific operation (e.g., "PURCHASE", "DEPOSIT")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    Enables forward replay (apply new_state), backward unwind (restore
    old_state) and audit queries via changed_fields().
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (Decimal, finite and non-zero).
        unit_symbol: The unit being transferred (e.g., "USDT", "ASP", "MORTGAGE-1").
        source: The wallet debited.
        dest: The wallet credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


@dataclass(frozen=True, slots=True)
class ProtocolEvent:
    """
    Observable event emitted by a committed state transition.

    Events ride on the PendingTransaction that causes the transition and are
    appended to the ledger's event log only when that transaction applies,
    so each transition emits its events exactly once.

    Attributes:
        name: Event name (e.g., "MortgageCreated", "Deposited")
        args: Event arguments as a frozen tuple of (key, value) pairs
    """
    name: str
    args: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, name: str, **kwargs: Any) -> 'ProtocolEvent':
        """Build an event from keyword arguments, preserving argument order."""
        return cls(name=name, args=tuple(kwargs.items()))

    @property
    def args_dict(self) -> Dict[str, Any]:
        return dict(self.args)

    def __getitem__(self, key: str) -> Any:
        return self.args_dict[key]

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v}" for k, v in self.args)
        return f"{self.name}({inner})"


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, set):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on moves, state changes, origin and units to create; never
    on timestamps or ledger-specific data. Used for idempotency checks.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by compute_* functions and submitted to Ledger.execute().

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units to register before executing moves
        events: Protocol events emitted if (and only if) the transaction applies
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[ProtocolEvent, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, state changes or units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, "
            f"{len(self.events)} events, {self.origin})"
        )


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    events: Optional[List[ProtocolEvent]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, state changes and events.

    This is the standard way to create transactions.

    Example:
        def compute_inflow(view, pool, source, amount):
            old_state = view.get_unit_state(pool)
            new_state = {**old_state, "total_assets": old_state["total_assets"] + amount}
            moves = [Move(amount, "USDT", source, "staking_pool", "inflow_1")]
            changes = [UnitStateChange(unit=pool, old_state=old_state, new_state=new_state)]
            return build_transaction(view, moves, changes,
                                     events=[ProtocolEvent.of("InterestReceived", amount=amount)])
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    # Deep copy state changes to prevent later mutation by the caller
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        events=tuple(events or ()),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction (no moves, no state changes)."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Units registered by this transaction
        events: Protocol events emitted by this transaction
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[ProtocolEvent, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id}",
            f"  intent_id      : {self.intent_id}",
            f"  timestamp      : {self.timestamp}",
            f"  execution_time : {self.execution_time}",
            f"  sequence       : {self.sequence_number}",
            f"  origin         : {self.origin}",
        ]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.name})")
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} -> {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} -> {new_val!r}")
        for event in self.events:
            lines.append(f"  event {event!r}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDT", "MORTGAGE-1").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (STABLECOIN, POOL_SHARE, MORTGAGE).
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision.

        Returns the value unchanged if decimal_places is None.
        """
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return quantize(value, self.decimal_places, rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def whole_unit_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Enforce that a non-fungible unit only ever moves as exactly one token.

    Raises:
        TransferRuleViolation: If the move quantity is not 1.
    """
    if move.quantity != Decimal("1"):
        raise TransferRuleViolation(
            f"{move.unit_symbol} is non-fungible: quantity must be 1, got {move.quantity}"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def stablecoin(symbol: str, name: str, decimal_places: int = 6, issuer: str = SYSTEM_WALLET) -> Unit:
    """
    Create a fully collateralised stablecoin unit (no overdrafts).

    This is the settlement asset of the protocol: every wallet except the
    issuing system wallet must keep a non-negative balance. Token allowances
    live in the unit state as {owner: {spender: amount}}.

    Args:
        symbol: Token symbol (e.g., "USDT").
        name: Full token name.
        decimal_places: Token precision (USDT uses 6).
        issuer: Wallet that mints the token.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_STABLECOIN,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
        _frozen_state=_freeze_state({
            'issuer': issuer,
            'decimals': decimal_places,
            'allowances': {},
        })
    )
