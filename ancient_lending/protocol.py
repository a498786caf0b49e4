"""
protocol.py - Lending protocol facades

The stateful entry points of the protocol. Each facade method:
    1. acquires the per-entity locks (mortgage -> pool) and the ledger lock
    2. runs a pure compute_* function against the ledger as a LedgerView
    3. executes the resulting PendingTransaction atomically
    4. logs the committed operation, or logs and re-raises the rejection

Typed protocol errors are raised by the compute functions before anything
executes. If the ledger itself rejects a transaction, TransactionRejected
carries the ledger's reason. Either way balances, unit state, the
transaction log and the event log are left unchanged.

Example:
    protocol = LendingProtocol()
    protocol.token.mint("alice", Decimal("50000"))
    token_id = protocol.mortgages.purchase_property("alice", Decimal("150000"))
    protocol.mortgages.make_payment("alice", token_id)
    protocol.pool.deposit("bob", Decimal("1000"))
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
import itertools
import logging
import threading

from .config import ProtocolConfig
from .core import (
    LedgerView, PendingTransaction, ExecuteResult, TransactionOrigin, OriginType,
    SYSTEM_WALLET, ProtocolError, InvalidState, TransactionRejected,
)
from .ledger import Ledger
from .units import token as token_unit
from .units import staking_pool as pool_unit
from .units import mortgage as mortgage_unit
from .units.mortgage import (
    Appraisal, AmortizationRow, MortgageRecord, PaymentBreakdown, PurchaseQuote,
)
from .units.staking_pool import PoolMetrics

logger = logging.getLogger(__name__)


def _event_arg(pending: PendingTransaction, name: str, key: str) -> Any:
    for event in pending.events:
        if event.name == name:
            return event[key]
    raise KeyError(f"{name} event missing from transaction")


class LendingProtocol:
    """
    The protocol: one ledger, one settlement token, one staking pool and the
    mortgage ledger, sharing one immutable ProtocolConfig.

    Args:
        config: Economic parameters (default: ProtocolConfig())
        ledger: Existing ledger to build on (default: a new one)
        name: Ledger name when creating a new ledger
        initial_time: Starting logical time for a new ledger
        verbose: Log ledger transactions at INFO instead of DEBUG
    """

    def __init__(
        self,
        config: Optional[ProtocolConfig] = None,
        ledger: Optional[Ledger] = None,
        name: str = "ancient_lending",
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
    ):
        self.config = config or ProtocolConfig()
        self.ledger = ledger or Ledger(name, initial_time=initial_time, verbose=verbose)
        self._ledger_lock = threading.RLock()
        self._pool_lock = threading.RLock()
        self._op_ids = itertools.count(1)

        for wallet in (self.config.treasury_wallet, self.config.pool_wallet, self.config.appraiser_wallet):
            self._ensure_wallet(wallet)
        self._genesis()

        self.token = SettlementToken(self)
        self.pool = StakingPool(self)
        self.mortgages = MortgageLedger(self)

    def _genesis(self) -> None:
        """Register the settlement token and pool share units in one logged transaction."""
        cfg = self.config
        units = []
        if cfg.currency not in self.ledger.units:
            units.append(token_unit.create_settlement_token(cfg.currency, cfg.currency, cfg.currency_decimals))
        if cfg.share_symbol not in self.ledger.units:
            units.append(pool_unit.create_staking_pool_unit(
                symbol=cfg.share_symbol,
                name="Ancient Staking Pool Share",
                pool_wallet=cfg.pool_wallet,
                currency=cfg.currency,
                min_deposit=cfg.min_deposit,
                management_fee_bps=cfg.management_fee_bps,
                currency_decimals=cfg.currency_decimals,
                share_decimals=cfg.share_decimals,
            ))
        if not units:
            return
        pending = PendingTransaction(
            moves=(),
            state_changes=(),
            origin=TransactionOrigin(OriginType.SYSTEM, "genesis", event_type="GENESIS"),
            timestamp=self.ledger.current_time,
            units_to_create=tuple(units),
        )
        if self.ledger.execute(pending) != ExecuteResult.APPLIED:
            raise TransactionRejected(f"genesis rejected: {self.ledger.last_rejection_reason}")

    # ------------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------------

    def _ensure_wallet(self, wallet: str) -> None:
        if not self.ledger.is_registered(wallet):
            self.ledger.register_wallet(wallet)

    def next_op_id(self) -> str:
        return f"op-{next(self._op_ids):08d}"

    def run(
        self,
        operation: str,
        compute: Callable[[LedgerView, str], PendingTransaction],
        wallets: Sequence[str] = (),
    ) -> PendingTransaction:
        """
        Compute and execute one protocol operation under the ledger lock.

        Args:
            operation: Name used in log records
            compute: fn(view, op_id) -> PendingTransaction; raises ProtocolError
            wallets: Wallets that must exist before execution (receivers)

        Returns:
            The applied PendingTransaction

        Raises:
            ProtocolError: Validation failure, or TransactionRejected when the
                ledger refuses the transaction
        """
        with self._ledger_lock:
            op_id = self.next_op_id()
            try:
                pending = compute(self.ledger, op_id)
                for wallet in wallets:
                    self._ensure_wallet(wallet)
                result = self.ledger.execute(pending)
                if result == ExecuteResult.REJECTED:
                    raise TransactionRejected(
                        f"{operation} rejected by ledger: {self.ledger.last_rejection_reason}"
                    )
                if result == ExecuteResult.ALREADY_APPLIED:
                    raise TransactionRejected(f"{operation} duplicates intent {pending.intent_id}")
            except ProtocolError as e:
                logger.warning("%s %s rejected: %s: %s", operation, op_id, type(e).__name__, e)
                raise
            logger.info(
                "%s %s committed (%d moves, %d events)",
                operation, op_id, len(pending.moves), len(pending.events),
                extra={"extra": {"operation": operation, "op_id": op_id, "intent_id": pending.intent_id}},
            )
            return pending

    def read(self, fn: Callable[[LedgerView], Any]) -> Any:
        """Run a read-only query against a consistent snapshot."""
        with self._ledger_lock:
            return fn(self.ledger)

    @contextmanager
    def pool_lock(self) -> Iterator[None]:
        with self._pool_lock:
            yield

    # ------------------------------------------------------------------------
    # Protocol-wide queries
    # ------------------------------------------------------------------------

    @property
    def current_time(self) -> datetime:
        return self.ledger.current_time

    def advance_time(self, new_time: datetime) -> None:
        with self._ledger_lock:
            self.ledger.advance_time(new_time)

    @property
    def events(self) -> List:
        """All protocol events emitted so far, in order."""
        with self._ledger_lock:
            return list(self.ledger.event_log)

    def events_named(self, name: str) -> List:
        with self._ledger_lock:
            return self.ledger.events_named(name)

    def parameters(self) -> Dict[str, Any]:
        """Read-only configuration constants."""
        return self.config.to_dict()

    def verify_invariants(self) -> List[str]:
        """
        Check pool and mortgage invariants; return violations (empty if none).

        Pool: total_assets == custody balance, total_shares == held shares.
        Mortgage: payments_made <= term_months, is_active iff
        payments_made < term_months, exactly one holder.
        """
        with self._ledger_lock:
            problems = pool_unit.check_pool_invariants(self.ledger, self.config.share_symbol)
            for token_id in self.mortgages.token_ids():
                symbol = mortgage_unit.mortgage_symbol(self.config.mortgage_prefix, token_id)
                terms, state = mortgage_unit.load_mortgage(self.ledger, symbol)
                if state.payments_made > terms.term_months:
                    problems.append(f"mortgage {token_id}: payments_made exceeds term")
                if state.is_active != (state.payments_made < terms.term_months):
                    problems.append(f"mortgage {token_id}: is_active inconsistent with payments_made")
                holders = [w for w in self.ledger.get_positions(symbol) if w != SYSTEM_WALLET]
                if len(holders) != 1:
                    problems.append(f"mortgage {token_id}: {len(holders)} holders")
            return problems


class SettlementToken:
    """ERC20-like surface over the settlement stablecoin."""

    def __init__(self, protocol: LendingProtocol):
        self._protocol = protocol
        self.symbol = protocol.config.currency
        self.decimals = protocol.config.currency_decimals

    def balance_of(self, owner: str) -> Decimal:
        return self._protocol.read(lambda v: token_unit.get_balance(v, self.symbol, owner))

    def allowance(self, owner: str, spender: str) -> Decimal:
        return self._protocol.read(lambda v: token_unit.get_allowance(v, self.symbol, owner, spender))

    def total_supply(self) -> Decimal:
        """Tokens issued and held outside the system wallet."""
        return self._protocol.read(lambda v: v.circulating_supply(self.symbol))

    def approve(self, owner: str, spender: str, amount: Any) -> bool:
        self._protocol.run(
            "approve",
            lambda v, op: token_unit.compute_approve(v, self.symbol, owner, spender, amount, op),
            wallets=(owner, spender),
        )
        return True

    def transfer(self, source: str, dest: str, amount: Any) -> bool:
        self._protocol.run(
            "transfer",
            lambda v, op: token_unit.compute_transfer(v, self.symbol, source, dest, amount, op),
            wallets=(dest,),
        )
        return True

    def transfer_from(self, spender: str, source: str, dest: str, amount: Any) -> bool:
        self._protocol.run(
            "transfer_from",
            lambda v, op: token_unit.compute_transfer_from(v, self.symbol, spender, source, dest, amount, op),
            wallets=(dest,),
        )
        return True

    def mint(self, dest: str, amount: Any) -> Decimal:
        """Test faucet: issue amount to dest. Returns dest's new balance."""
        self._protocol.run(
            "mint",
            lambda v, op: token_unit.compute_mint(v, self.symbol, dest, amount, op),
            wallets=(dest,),
        )
        return self.balance_of(dest)


class StakingPool:
    """The staking pool singleton: deposits, withdrawals, inflows and metrics."""

    def __init__(self, protocol: LendingProtocol):
        self._protocol = protocol
        self.symbol = protocol.config.share_symbol

    def deposit(self, user: str, amount: Any) -> Decimal:
        """Deposit settlement units; returns shares minted."""
        with self._protocol.pool_lock():
            pending = self._protocol.run(
                "deposit",
                lambda v, op: pool_unit.compute_deposit(v, self.symbol, user, amount, op),
            )
        return _event_arg(pending, "Deposited", "shares_minted")

    def withdraw(self, user: str, shares: Any) -> Decimal:
        """Burn shares; returns the settlement amount paid out."""
        with self._protocol.pool_lock():
            pending = self._protocol.run(
                "withdraw",
                lambda v, op: pool_unit.compute_withdraw(v, self.symbol, user, shares, op),
            )
        return _event_arg(pending, "Withdrawn", "amount")

    def receive_interest(self, source: str, amount: Any) -> None:
        with self._protocol.pool_lock():
            self._protocol.run(
                "receive_interest",
                lambda v, op: pool_unit.compute_receive_interest(v, self.symbol, source, amount, op),
            )

    def receive_appreciation(self, source: str, amount: Any) -> None:
        with self._protocol.pool_lock():
            self._protocol.run(
                "receive_appreciation",
                lambda v, op: pool_unit.compute_receive_appreciation(v, self.symbol, source, amount, op),
            )

    def get_pool_metrics(self) -> PoolMetrics:
        return self._protocol.read(lambda v: pool_unit.get_pool_metrics(v, self.symbol))

    def exchange_rate(self) -> Decimal:
        return self.get_pool_metrics().exchange_rate

    def balance_of(self, user: str) -> Decimal:
        return self._protocol.read(lambda v: pool_unit.share_balance(v, self.symbol, user))

    def total_supply(self) -> Decimal:
        return self.get_pool_metrics().total_shares

    def preview_deposit(self, amount: Any) -> Decimal:
        return self._protocol.read(lambda v: pool_unit.preview_deposit(v, self.symbol, amount))

    def preview_withdraw(self, shares: Any) -> Decimal:
        return self._protocol.read(lambda v: pool_unit.preview_withdraw(v, self.symbol, shares))


class MortgageLedger:
    """
    Arena of mortgages keyed by integer token id.

    Ids are allocated 1, 2, 3, ... and never reused; an id is consumed only
    by a purchase that commits.
    """

    def __init__(self, protocol: LendingProtocol):
        self._protocol = protocol
        self._config = protocol.config
        self._token_ids: List[int] = []
        self._next_token_id = 1
        self._locks: Dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _symbol(self, token_id: int) -> str:
        if token_id not in self._token_ids:
            raise InvalidState(f"mortgage {token_id} does not exist")
        return mortgage_unit.mortgage_symbol(self._config.mortgage_prefix, token_id)

    @contextmanager
    def _lock(self, token_id: int) -> Iterator[None]:
        with self._locks_guard:
            # Unknown ids get a throwaway lock; the operation fails in _symbol.
            lock = self._locks.get(token_id) or threading.RLock()
        with lock:
            yield

    def token_ids(self) -> List[int]:
        with self._locks_guard:
            return list(self._token_ids)

    # ------------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------------

    def purchase_property(self, borrower: str, property_price: Any) -> int:
        """Create a mortgage for borrower; returns the new token id."""
        with self._protocol._ledger_lock:
            token_id = self._next_token_id
            self._protocol.run(
                "purchase_property",
                lambda v, op: mortgage_unit.compute_purchase(v, self._config, borrower, property_price, token_id, op),
            )
            with self._locks_guard:
                self._token_ids.append(token_id)
                self._locks[token_id] = threading.RLock()
            self._next_token_id += 1
        return token_id

    def make_payment(self, payer: str, token_id: int) -> PaymentBreakdown:
        """Make the next scheduled payment; returns how it was split."""
        with self._lock(token_id), self._protocol.pool_lock():
            result: Dict[str, PaymentBreakdown] = {}

            def compute(view: LedgerView, op: str) -> PendingTransaction:
                pending, breakdown = mortgage_unit.compute_payment(view, self._symbol(token_id), payer, op)
                result['breakdown'] = breakdown
                return pending

            self._protocol.run("make_payment", compute)
            return result['breakdown']

    def appraise_property(self, caller: str, token_id: int, appraised_value: Any) -> Appraisal:
        with self._lock(token_id):
            self._protocol.run(
                "appraise_property",
                lambda v, op: mortgage_unit.compute_appraisal(v, self._symbol(token_id), caller, appraised_value, op),
            )
        return self.get_appraisal(token_id)

    def distribute_appreciation(self, caller: str, token_id: int) -> Appraisal:
        with self._lock(token_id), self._protocol.pool_lock():
            self._protocol.run(
                "distribute_appreciation",
                lambda v, op: mortgage_unit.compute_distribution(v, self._symbol(token_id), caller, op),
            )
        return self.get_appraisal(token_id)

    def transfer_mortgage(self, source: str, dest: str, token_id: int) -> None:
        with self._lock(token_id):
            self._protocol.run(
                "transfer_mortgage",
                lambda v, op: mortgage_unit.compute_transfer_mortgage(v, self._symbol(token_id), source, dest, op),
                wallets=(dest,),
            )

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    def get_mortgage(self, token_id: int) -> MortgageRecord:
        return self._protocol.read(lambda v: mortgage_unit.get_mortgage(v, self._symbol(token_id)))

    def get_appraisal(self, token_id: int) -> Optional[Appraisal]:
        def query(view: LedgerView) -> Optional[Appraisal]:
            _, state = mortgage_unit.load_mortgage(view, self._symbol(token_id))
            return state.appraisal
        return self._protocol.read(query)

    def owner_of(self, token_id: int) -> Optional[str]:
        return self._protocol.read(lambda v: mortgage_unit.owner_of(v, self._symbol(token_id)))

    def tokens_of_owner(self, owner: str) -> List[int]:
        def query(view: LedgerView) -> List[int]:
            return [
                token_id for token_id in self.token_ids()
                if mortgage_unit.owner_of(view, self._symbol(token_id)) == owner
            ]
        return self._protocol.read(query)

    def balance_of(self, owner: str) -> int:
        return len(self.tokens_of_owner(owner))

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        owned = self.tokens_of_owner(owner)
        if not 0 <= index < len(owned):
            raise InvalidState(f"{owner} owns {len(owned)} mortgages, index {index} out of range")
        return owned[index]

    def total_supply(self) -> int:
        return len(self.token_ids())

    def quote_purchase(self, property_price: Any) -> PurchaseQuote:
        price = token_unit.parse_amount(property_price, self._config.currency_decimals, name="property_price")
        return mortgage_unit.calculate_purchase_quote(self._config, price)

    def amortization_schedule(self, token_id: int) -> List[AmortizationRow]:
        def query(view: LedgerView) -> List[AmortizationRow]:
            terms, _ = mortgage_unit.load_mortgage(view, self._symbol(token_id))
            return mortgage_unit.calculate_amortization_schedule(
                terms.loan_amount, terms.monthly_payment, terms.monthly_rate,
                terms.term_months, terms.currency_decimals,
            )
        return self._protocol.read(query)
