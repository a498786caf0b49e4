"""
mortgage.py - Property Mortgage Units

This module provides mortgage token creation and lifecycle processing using
a pure function architecture with explicit inputs.

Each property purchase creates one mortgage unit, MORTGAGE-<token_id>. The
unit is a non-fungible token (balance 0 or 1, whole-unit transfers only)
whose holder is the mortgage owner, and its unit state is the mortgage
record: immutable terms plus payment progress and the optional appraisal.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - MortgageTerms: Immutable loan terms (set at purchase, never change)
   - MortgageState: Immutable progress snapshot (changes on every payment)
   - Appraisal: Optional appraisal record (0 or 1 per mortgage)

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Purchase quote, monthly payment, interest/principal split,
     amortization schedule, appreciation split
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_mortgage):
   - Extract terms and state from LedgerView once

4. CONVENIENCE FUNCTIONS (compute_*):
   - Combine loading + pure calculation + result building
   - Return a PendingTransaction (moves, state change, events). Interest and
     appreciation for stakers flow into the pool inside the same transaction.

Key Formulas:
    down_payment    = price * down_payment_bps / 10000
    platform_fee    = price * platform_fee_bps / 10000
    loan_amount     = price - down_payment
    monthly_payment = L * r / (1 - (1 + r) ** -n)     (AMORTIZING, rounded up)
                    = L * flat_monthly_rate            (FLAT, rounded up)
    interest_k      = outstanding_k * r
    principal_k     = monthly_payment - interest_k     (final payment: outstanding)

State machine:
    Created -> Active -> [Payments]* -> Completed (is_active = False)
    NotAppraised -> Appraised -> Distributed        (independent axis)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_UP
from typing import Any, Dict, List, Optional, Tuple

from ..config import NegativeAppreciationPolicy, PaymentModel, ProtocolConfig
from ..core import (
    LedgerView, Move, PendingTransaction, ProtocolEvent, Unit, UnitStateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET, UNIT_TYPE_MORTGAGE,
    InvalidAmount, InvalidState, AlreadyDistributed, InsufficientBalance, Unauthorized,
    bps_of, build_transaction, quantize, to_decimal, whole_unit_transfer_rule,
    _freeze_state,
)
from .staking_pool import INFLOW_APPRECIATION, INFLOW_INTEREST, build_inflow, load_staking_pool
from .token import parse_amount


# Scheduled spacing between payments. Informational only; payments are never gated on it.
PAYMENT_INTERVAL = timedelta(days=30)


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class MortgageTerms:
    """
    Immutable loan terms - fixed at purchase, never change.

    The economic policy in force at purchase (rates, split ratio, negative
    appreciation handling) is captured here, so later configuration changes
    never alter an existing mortgage.
    """
    token_id: int
    symbol: str
    borrower: str
    currency: str
    currency_decimals: int
    property_price: Decimal
    down_payment: Decimal
    platform_fee: Decimal
    loan_amount: Decimal
    monthly_payment: Decimal
    monthly_rate: Decimal
    term_months: int
    management_fee_bps: int
    treasury_share_bps: int
    negative_appreciation: str      # NegativeAppreciationPolicy value
    treasury_wallet: str
    appraiser_wallet: str
    pool_symbol: str
    created_at: Optional[datetime] = None

    def __post_init__(self):
        for name in ('property_price', 'down_payment', 'platform_fee', 'loan_amount',
                     'monthly_payment', 'monthly_rate'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))


@dataclass(frozen=True, slots=True)
class Appraisal:
    """Appraisal record. Shares are zero until distributed."""
    appraised_value: Decimal
    appreciation: Decimal           # appraised_value - property_price, may be <= 0
    treasury_share: Decimal = Decimal("0")
    staker_share: Decimal = Decimal("0")
    distributed: bool = False
    appraised_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appraised_value': self.appraised_value,
            'appreciation': self.appreciation,
            'treasury_share': self.treasury_share,
            'staker_share': self.staker_share,
            'distributed': self.distributed,
            'appraised_at': self.appraised_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Appraisal':
        return cls(
            appraised_value=to_decimal(raw['appraised_value']),
            appreciation=to_decimal(raw['appreciation']),
            treasury_share=to_decimal(raw.get('treasury_share', Decimal("0"))),
            staker_share=to_decimal(raw.get('staker_share', Decimal("0"))),
            distributed=raw.get('distributed', False),
            appraised_at=raw.get('appraised_at'),
        )


@dataclass(frozen=True, slots=True)
class MortgageState:
    """
    Immutable snapshot of mortgage progress.

    Invariants: payments_made <= term_months and
    is_active == (payments_made < term_months).
    """
    payments_made: int
    outstanding_principal: Decimal
    total_interest_paid: Decimal = Decimal("0")
    total_principal_paid: Decimal = Decimal("0")
    is_active: bool = True
    last_payment_date: Optional[datetime] = None
    appraisal: Optional[Appraisal] = None


@dataclass(frozen=True, slots=True)
class MortgageRecord:
    """Read-only projection returned by getMortgage."""
    token_id: int
    borrower: str
    owner: Optional[str]
    property_price: Decimal
    down_payment: Decimal
    platform_fee: Decimal
    loan_amount: Decimal
    monthly_payment: Decimal
    term_months: int
    payments_made: int
    payments_remaining: int
    total_interest_paid: Decimal
    total_principal_paid: Decimal
    outstanding_principal: Decimal
    is_active: bool
    next_payment_due: Optional[datetime] = None

    @property
    def progress(self) -> Decimal:
        """Fraction of scheduled payments made, 0 to 1."""
        return Decimal(self.payments_made) / Decimal(self.term_months)

    @property
    def progress_percent(self) -> Decimal:
        return self.progress * 100


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    """What a purchase at property_price costs up front and over the term."""
    property_price: Decimal
    down_payment: Decimal
    platform_fee: Decimal
    total_due: Decimal
    loan_amount: Decimal
    monthly_payment: Decimal
    term_months: int
    total_of_payments: Decimal
    total_interest: Decimal


@dataclass(frozen=True, slots=True)
class AmortizationRow:
    payment_number: int
    payment: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal


@dataclass(frozen=True, slots=True)
class PaymentBreakdown:
    """
    Result of one makePayment.

    interest = management_fee + pool_interest; payment = interest + principal.
    """
    token_id: int
    payment_number: int
    payment: Decimal
    interest: Decimal
    principal: Decimal
    management_fee: Decimal
    pool_interest: Decimal
    remaining_principal: Decimal
    completed: bool


# ============================================================================
# ADAPTERS
# ============================================================================

def mortgage_symbol(prefix: str, token_id: int) -> str:
    return f"{prefix}-{token_id}"


def load_mortgage(view: LedgerView, symbol: str) -> Tuple[MortgageTerms, MortgageState]:
    """
    Load a mortgage from ledger state as typed frozen dataclasses.

    Raises:
        InvalidState: If the unit does not hold a mortgage record
    """
    raw = view.get_unit_state(symbol)
    if 'token_id' not in raw:
        raise InvalidState(f"{symbol} is not a mortgage")

    terms = MortgageTerms(
        token_id=raw['token_id'],
        symbol=symbol,
        borrower=raw['borrower'],
        currency=raw['currency'],
        currency_decimals=raw['currency_decimals'],
        property_price=raw['property_price'],
        down_payment=raw['down_payment'],
        platform_fee=raw['platform_fee'],
        loan_amount=raw['loan_amount'],
        monthly_payment=raw['monthly_payment'],
        monthly_rate=raw['monthly_rate'],
        term_months=raw['term_months'],
        management_fee_bps=raw['management_fee_bps'],
        treasury_share_bps=raw['treasury_share_bps'],
        negative_appreciation=raw['negative_appreciation'],
        treasury_wallet=raw['treasury_wallet'],
        appraiser_wallet=raw['appraiser_wallet'],
        pool_symbol=raw['pool_symbol'],
        created_at=raw.get('created_at'),
    )
    appraisal_raw = raw.get('appraisal')
    state = MortgageState(
        payments_made=raw.get('payments_made', 0),
        outstanding_principal=to_decimal(raw.get('outstanding_principal', terms.loan_amount)),
        total_interest_paid=to_decimal(raw.get('total_interest_paid', Decimal("0"))),
        total_principal_paid=to_decimal(raw.get('total_principal_paid', Decimal("0"))),
        is_active=raw.get('is_active', True),
        last_payment_date=raw.get('last_payment_date'),
        appraisal=Appraisal.from_dict(appraisal_raw) if appraisal_raw else None,
    )
    return terms, state


def to_state_dict(terms: MortgageTerms, state: MortgageState) -> Dict[str, Any]:
    """Convert terms and state back to the unit state dictionary."""
    return {
        'token_id': terms.token_id,
        'borrower': terms.borrower,
        'currency': terms.currency,
        'currency_decimals': terms.currency_decimals,
        'property_price': terms.property_price,
        'down_payment': terms.down_payment,
        'platform_fee': terms.platform_fee,
        'loan_amount': terms.loan_amount,
        'monthly_payment': terms.monthly_payment,
        'monthly_rate': terms.monthly_rate,
        'term_months': terms.term_months,
        'management_fee_bps': terms.management_fee_bps,
        'treasury_share_bps': terms.treasury_share_bps,
        'negative_appreciation': terms.negative_appreciation,
        'treasury_wallet': terms.treasury_wallet,
        'appraiser_wallet': terms.appraiser_wallet,
        'pool_symbol': terms.pool_symbol,
        'created_at': terms.created_at,
        'payments_made': state.payments_made,
        'outstanding_principal': state.outstanding_principal,
        'total_interest_paid': state.total_interest_paid,
        'total_principal_paid': state.total_principal_paid,
        'is_active': state.is_active,
        'last_payment_date': state.last_payment_date,
        'appraisal': state.appraisal.to_dict() if state.appraisal else None,
    }


def owner_of(view: LedgerView, symbol: str) -> Optional[str]:
    """Wallet holding the mortgage token, None if it is not held."""
    for wallet, qty in view.get_positions(symbol).items():
        if wallet != SYSTEM_WALLET and qty > 0:
            return wallet
    return None


def to_record(terms: MortgageTerms, state: MortgageState, owner: Optional[str]) -> MortgageRecord:
    return MortgageRecord(
        token_id=terms.token_id,
        borrower=terms.borrower,
        owner=owner,
        property_price=terms.property_price,
        down_payment=terms.down_payment,
        platform_fee=terms.platform_fee,
        loan_amount=terms.loan_amount,
        monthly_payment=terms.monthly_payment,
        term_months=terms.term_months,
        payments_made=state.payments_made,
        payments_remaining=terms.term_months - state.payments_made,
        total_interest_paid=state.total_interest_paid,
        total_principal_paid=state.total_principal_paid,
        outstanding_principal=state.outstanding_principal,
        is_active=state.is_active,
        next_payment_due=calculate_next_payment_due(terms.created_at, state.payments_made, terms.term_months),
    )


def get_mortgage(view: LedgerView, symbol: str) -> MortgageRecord:
    terms, state = load_mortgage(view, symbol)
    return to_record(terms, state, owner_of(view, symbol))


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_monthly_payment(
    loan_amount: Decimal,
    monthly_rate: Decimal,
    term_months: int,
    decimal_places: int,
    model: PaymentModel = PaymentModel.AMORTIZING,
    flat_monthly_rate: Decimal = Decimal("0.0121"),
) -> Decimal:
    """
    Fixed monthly payment, rounded up to the asset precision.

    Args:
        loan_amount: Financed principal L
        monthly_rate: r = annual rate / 12
        term_months: n
        decimal_places: Asset precision
        model: AMORTIZING uses L*r / (1 - (1+r)^-n) (L/n when r == 0);
               FLAT uses L * flat_monthly_rate
        flat_monthly_rate: Monthly factor for the FLAT model

    Example:
        # $120,000 at 8% APR over 120 months: about $1,455.93 per month
        payment = calculate_monthly_payment(Decimal("120000"), Decimal("0.08") / 12, 120, 6)
    """
    if term_months <= 0:
        raise ValueError(f"term_months must be positive, got {term_months}")
    if model == PaymentModel.FLAT:
        raw = loan_amount * flat_monthly_rate
    elif monthly_rate == 0:
        raw = loan_amount / Decimal(term_months)
    else:
        raw = loan_amount * monthly_rate / (1 - (1 + monthly_rate) ** -term_months)
    return quantize(raw, decimal_places, ROUND_UP)


def calculate_next_payment_due(
    created_at: Optional[datetime],
    payments_made: int,
    term_months: int,
) -> Optional[datetime]:
    """
    Due date of the next scheduled payment: created_at + (payments_made + 1) intervals.

    Paying early does not move later due dates. None once the term is complete
    or when the purchase time is unknown.
    """
    if created_at is None or payments_made >= term_months:
        return None
    return created_at + PAYMENT_INTERVAL * (payments_made + 1)


def calculate_payment_split(
    outstanding: Decimal,
    monthly_payment: Decimal,
    monthly_rate: Decimal,
    payment_number: int,
    term_months: int,
    decimal_places: int,
) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Split payment number payment_number into interest and principal.

    Interest is outstanding * r at the asset precision. The principal
    portion is the remainder, capped at the outstanding balance. The final
    payment pays off whatever principal is left, so the outstanding balance
    ends at exactly zero.

    Returns:
        (payment, interest, principal) with payment == interest + principal
    """
    interest = quantize(outstanding * monthly_rate, decimal_places, ROUND_HALF_EVEN)
    if payment_number >= term_months:
        principal = outstanding
    else:
        interest = min(interest, monthly_payment)
        principal = min(monthly_payment - interest, outstanding)
    return interest + principal, interest, principal


def calculate_amortization_schedule(
    loan_amount: Decimal,
    monthly_payment: Decimal,
    monthly_rate: Decimal,
    term_months: int,
    decimal_places: int,
) -> List[AmortizationRow]:
    """
    Full payment-by-payment schedule.

    Uses calculate_payment_split, so every row matches what the
    corresponding make_payment applies.
    """
    rows = []
    outstanding = loan_amount
    for number in range(1, term_months + 1):
        payment, interest, principal = calculate_payment_split(
            outstanding, monthly_payment, monthly_rate, number, term_months, decimal_places
        )
        outstanding = outstanding - principal
        rows.append(AmortizationRow(number, payment, interest, principal, outstanding))
    return rows


def calculate_purchase_quote(config: ProtocolConfig, property_price: Decimal) -> PurchaseQuote:
    """
    Up-front cost and repayment totals for a purchase at property_price.

    Example:
        quote = calculate_purchase_quote(ProtocolConfig(), Decimal("150000"))
        quote.down_payment   # Decimal('30000')
        quote.platform_fee   # Decimal('4500')
        quote.loan_amount    # Decimal('120000')
    """
    decimals = config.currency_decimals
    down_payment = bps_of(property_price, config.down_payment_bps, decimals)
    platform_fee = bps_of(property_price, config.platform_fee_bps, decimals)
    loan_amount = property_price - down_payment
    monthly_payment = calculate_monthly_payment(
        loan_amount, config.monthly_rate, config.term_months, decimals,
        config.payment_model, config.flat_monthly_rate,
    )
    schedule = calculate_amortization_schedule(
        loan_amount, monthly_payment, config.monthly_rate, config.term_months, decimals
    )
    total_of_payments = sum((row.payment for row in schedule), Decimal("0"))
    return PurchaseQuote(
        property_price=property_price,
        down_payment=down_payment,
        platform_fee=platform_fee,
        total_due=down_payment + platform_fee,
        loan_amount=loan_amount,
        monthly_payment=monthly_payment,
        term_months=config.term_months,
        total_of_payments=total_of_payments,
        total_interest=total_of_payments - loan_amount,
    )


def calculate_payment(
    terms: MortgageTerms,
    state: MortgageState,
    payment_date: Optional[datetime] = None,
) -> Tuple[PaymentBreakdown, MortgageState]:
    """
    Apply the next scheduled payment.

    Returns:
        (breakdown, new_state)

    Raises:
        InvalidState: If the mortgage is no longer active
    """
    if not state.is_active or state.payments_made >= terms.term_months:
        raise InvalidState(f"mortgage {terms.token_id} is not active")

    number = state.payments_made + 1
    payment, interest, principal = calculate_payment_split(
        state.outstanding_principal, terms.monthly_payment, terms.monthly_rate,
        number, terms.term_months, terms.currency_decimals,
    )
    management_fee = bps_of(interest, terms.management_fee_bps, terms.currency_decimals)
    remaining = state.outstanding_principal - principal
    completed = number == terms.term_months

    new_state = MortgageState(
        payments_made=number,
        outstanding_principal=remaining,
        total_interest_paid=state.total_interest_paid + interest,
        total_principal_paid=state.total_principal_paid + principal,
        is_active=not completed,
        last_payment_date=payment_date,
        appraisal=state.appraisal,
    )
    breakdown = PaymentBreakdown(
        token_id=terms.token_id,
        payment_number=number,
        payment=payment,
        interest=interest,
        principal=principal,
        management_fee=management_fee,
        pool_interest=interest - management_fee,
        remaining_principal=remaining,
        completed=completed,
    )
    return breakdown, new_state


def calculate_appreciation_split(
    appreciation: Decimal,
    treasury_share_bps: int,
    policy: NegativeAppreciationPolicy,
    decimal_places: int,
) -> Tuple[Decimal, Decimal]:
    """
    Split appreciation into (treasury_share, staker_share).

    The treasury share rounds down and stakers receive the remainder, so the
    two always sum to the appreciation. Appreciation <= 0 yields (0, 0)
    under the ZERO policy.

    Raises:
        InvalidAmount: appreciation <= 0 under the REJECT policy
    """
    if appreciation <= 0:
        if NegativeAppreciationPolicy(policy) == NegativeAppreciationPolicy.REJECT:
            raise InvalidAmount(f"no positive appreciation to distribute ({appreciation})")
        return Decimal("0"), Decimal("0")
    treasury_share = bps_of(appreciation, treasury_share_bps, decimal_places)
    return treasury_share, appreciation - treasury_share


# ============================================================================
# UNIT CREATION
# ============================================================================


def create_mortgage_unit(terms: MortgageTerms) -> Unit:
    """
    Create the non-fungible mortgage token unit with a fresh record.

    Balance limits 0..1 and the whole-unit transfer rule make the unit a
    single indivisible token.
    """
    state = MortgageState(payments_made=0, outstanding_principal=terms.loan_amount)
    return Unit(
        symbol=terms.symbol,
        name=f"Property Mortgage #{terms.token_id}",
        unit_type=UNIT_TYPE_MORTGAGE,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=whole_unit_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


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


def _require_balance(view: LedgerView, wallet: str, currency: str, amount: Decimal) -> None:
    available = view.get_balance(wallet, currency) if wallet in view.list_wallets() else Decimal("0")
    if available < amount:
        raise InsufficientBalance(f"{wallet} holds {available} {currency}, needs {amount}")


def _require_owner(view: LedgerView, symbol: str, caller: str, token_id: int) -> None:
    if owner_of(view, symbol) != caller:
        raise Unauthorized(f"{caller} does not own mortgage {token_id}")


def compute_purchase(
    view: LedgerView,
    config: ProtocolConfig,
    borrower: str,
    property_price: Any,
    token_id: int,
    op_id: str = "purchase",
) -> PendingTransaction:
    """
    Purchase a property: collect down payment and fee, mint the mortgage token.

    Args:
        view: Read-only ledger access
        config: Economic parameters in force
        borrower: Buyer and initial token owner
        property_price: Price in settlement units
        token_id: Newly allocated mortgage id
        op_id: Operation identifier

    Returns:
        PendingTransaction with:
        - units_to_create: the MORTGAGE-<token_id> unit
        - moves: down payment and platform fee borrower -> treasury,
                 one mortgage token system -> borrower
        - events: MortgageCreated

    Raises:
        InvalidAmount: price <= 0 or not representable
        InsufficientBalance: borrower cannot cover down payment + fee

    Example:
        tx = compute_purchase(ledger, ProtocolConfig(), "alice", Decimal("150000"), 1)
        ledger.execute(tx)
    """
    price = parse_amount(property_price, config.currency_decimals, name="property_price")
    if borrower in (SYSTEM_WALLET, config.treasury_wallet, config.pool_wallet):
        raise Unauthorized(f"protocol wallet {borrower} cannot take a mortgage")
    quote = calculate_purchase_quote(config, price)
    if quote.loan_amount <= 0 or quote.monthly_payment <= 0:
        raise InvalidAmount(f"property_price {price} leaves nothing to finance")
    _require_balance(view, borrower, config.currency, quote.total_due)

    symbol = mortgage_symbol(config.mortgage_prefix, token_id)
    terms = MortgageTerms(
        token_id=token_id,
        symbol=symbol,
        borrower=borrower,
        currency=config.currency,
        currency_decimals=config.currency_decimals,
        property_price=price,
        down_payment=quote.down_payment,
        platform_fee=quote.platform_fee,
        loan_amount=quote.loan_amount,
        monthly_payment=quote.monthly_payment,
        monthly_rate=config.monthly_rate,
        term_months=config.term_months,
        management_fee_bps=config.management_fee_bps,
        treasury_share_bps=config.treasury_share_bps,
        negative_appreciation=config.negative_appreciation.value,
        treasury_wallet=config.treasury_wallet,
        appraiser_wallet=config.appraiser_wallet,
        pool_symbol=config.share_symbol,
        created_at=view.current_time,
    )

    moves = []
    if quote.down_payment > 0:
        moves.append(Move(quote.down_payment, config.currency, borrower,
                          config.treasury_wallet, f"down_payment_{op_id}"))
    if quote.platform_fee > 0:
        moves.append(Move(quote.platform_fee, config.currency, borrower,
                          config.treasury_wallet, f"platform_fee_{op_id}"))
    moves.append(Move(Decimal("1"), symbol, SYSTEM_WALLET, borrower, f"mint_{op_id}"))

    events = [ProtocolEvent.of(
        "MortgageCreated",
        token_id=token_id,
        borrower=borrower,
        property_price=price,
        loan_amount=quote.loan_amount,
        monthly_payment=quote.monthly_payment,
    )]
    return build_transaction(
        view, moves,
        origin=_origin(borrower, symbol, "PURCHASE", op_id),
        units_to_create=(create_mortgage_unit(terms),),
        events=events,
    )


def compute_payment(
    view: LedgerView,
    symbol: str,
    payer: str,
    op_id: str = "payment",
) -> Tuple[PendingTransaction, PaymentBreakdown]:
    """
    Make the next scheduled payment on a mortgage.

    Routing:
        principal       -> treasury
        management fee  -> treasury (interest * management_fee_bps)
        rest of interest -> staking pool as an interest inflow

    Returns:
        (PendingTransaction, PaymentBreakdown)

    Raises:
        InvalidState: mortgage inactive
        Unauthorized: payer does not hold the mortgage token
        InsufficientBalance: payer cannot cover the payment
    """
    terms, state = load_mortgage(view, symbol)
    if not state.is_active:
        raise InvalidState(f"mortgage {terms.token_id} is not active")
    _require_owner(view, symbol, payer, terms.token_id)
    breakdown, new_state = calculate_payment(terms, state, view.current_time)
    _require_balance(view, payer, terms.currency, breakdown.payment)

    moves: List[Move] = []
    changes: List[UnitStateChange] = []
    events: List[ProtocolEvent] = [ProtocolEvent.of(
        "PaymentMade",
        token_id=terms.token_id,
        payment_number=breakdown.payment_number,
        interest_paid=breakdown.interest,
        principal_paid=breakdown.principal,
    )]

    if breakdown.principal > 0:
        moves.append(Move(breakdown.principal, terms.currency, payer,
                          terms.treasury_wallet, f"principal_{op_id}"))
    if breakdown.management_fee > 0:
        moves.append(Move(breakdown.management_fee, terms.currency, payer,
                          terms.treasury_wallet, f"management_fee_{op_id}"))
    if breakdown.pool_interest > 0:
        pool_moves, pool_changes, pool_events = build_inflow(
            view, terms.pool_symbol, payer, breakdown.pool_interest, INFLOW_INTEREST, op_id
        )
        moves.extend(pool_moves)
        changes.extend(pool_changes)
        events.extend(pool_events)

    changes.append(UnitStateChange(
        unit=symbol,
        old_state=view.get_unit_state(symbol),
        new_state=to_state_dict(terms, new_state),
    ))
    if breakdown.completed:
        events.append(ProtocolEvent.of("MortgageCompleted", token_id=terms.token_id))

    pending = build_transaction(
        view, moves, changes, origin=_origin(payer, symbol, "PAYMENT", op_id), events=events
    )
    return pending, breakdown


def compute_appraisal(
    view: LedgerView,
    symbol: str,
    caller: str,
    appraised_value: Any,
    op_id: str = "appraisal",
) -> PendingTransaction:
    """
    Record the (single) appraisal of a mortgaged property.

    Raises:
        Unauthorized: caller is not the appraiser
        InvalidAmount: appraised_value <= 0
        AlreadyDistributed: appreciation was already distributed
        InvalidState: property already appraised
    """
    terms, state = load_mortgage(view, symbol)
    if caller != terms.appraiser_wallet:
        raise Unauthorized(f"{caller} is not the appraiser")
    value = parse_amount(appraised_value, terms.currency_decimals, name="appraised_value")
    if state.appraisal is not None:
        if state.appraisal.distributed:
            raise AlreadyDistributed(f"appreciation for mortgage {terms.token_id} already distributed")
        raise InvalidState(f"mortgage {terms.token_id} is already appraised")

    appraisal = Appraisal(
        appraised_value=value,
        appreciation=value - terms.property_price,
        appraised_at=view.current_time,
    )
    new_state = MortgageState(
        payments_made=state.payments_made,
        outstanding_principal=state.outstanding_principal,
        total_interest_paid=state.total_interest_paid,
        total_principal_paid=state.total_principal_paid,
        is_active=state.is_active,
        last_payment_date=state.last_payment_date,
        appraisal=appraisal,
    )
    changes = [UnitStateChange(unit=symbol, old_state=view.get_unit_state(symbol),
                               new_state=to_state_dict(terms, new_state))]
    events = [ProtocolEvent.of(
        "AppraiseProperty",
        token_id=terms.token_id,
        appraised_value=value,
        appreciation=appraisal.appreciation,
    )]
    return build_transaction(view, [], changes, origin=_origin(caller, symbol, "APPRAISE", op_id), events=events)


def compute_distribution(
    view: LedgerView,
    symbol: str,
    caller: str,
    op_id: str = "distribution",
) -> PendingTransaction:
    """
    Distribute recorded appreciation between the treasury and the stakers.

    Realized appreciation is issued from the system wallet: the treasury
    share to the treasury, the staker share into the pool as an
    appreciation inflow. Appreciation <= 0 follows the mortgage's
    negative appreciation policy.

    Raises:
        Unauthorized: caller is not the appraiser
        InvalidState: not appraised yet
        AlreadyDistributed: second distribution attempt
        InvalidAmount: appreciation <= 0 under the REJECT policy
    """
    terms, state = load_mortgage(view, symbol)
    if caller != terms.appraiser_wallet:
        raise Unauthorized(f"{caller} is not the appraiser")
    appraisal = state.appraisal
    if appraisal is None:
        raise InvalidState(f"mortgage {terms.token_id} has not been appraised")
    if appraisal.distributed:
        raise AlreadyDistributed(f"appreciation for mortgage {terms.token_id} already distributed")

    treasury_share, staker_share = calculate_appreciation_split(
        appraisal.appreciation, terms.treasury_share_bps,
        NegativeAppreciationPolicy(terms.negative_appreciation), terms.currency_decimals,
    )

    moves: List[Move] = []
    changes: List[UnitStateChange] = []
    events: List[ProtocolEvent] = []
    if treasury_share > 0:
        moves.append(Move(treasury_share, terms.currency, SYSTEM_WALLET,
                          terms.treasury_wallet, f"appreciation_treasury_{op_id}"))
    if staker_share > 0:
        pool_moves, pool_changes, pool_events = build_inflow(
            view, terms.pool_symbol, SYSTEM_WALLET, staker_share, INFLOW_APPRECIATION, op_id
        )
        moves.extend(pool_moves)
        changes.extend(pool_changes)
        events.extend(pool_events)

    distributed = Appraisal(
        appraised_value=appraisal.appraised_value,
        appreciation=appraisal.appreciation,
        treasury_share=treasury_share,
        staker_share=staker_share,
        distributed=True,
        appraised_at=appraisal.appraised_at,
    )
    new_state = MortgageState(
        payments_made=state.payments_made,
        outstanding_principal=state.outstanding_principal,
        total_interest_paid=state.total_interest_paid,
        total_principal_paid=state.total_principal_paid,
        is_active=state.is_active,
        last_payment_date=state.last_payment_date,
        appraisal=distributed,
    )
    changes.append(UnitStateChange(unit=symbol, old_state=view.get_unit_state(symbol),
                                   new_state=to_state_dict(terms, new_state)))
    events.append(ProtocolEvent.of(
        "AppreciationDistributed",
        token_id=terms.token_id,
        treasury_share=treasury_share,
        staker_share=staker_share,
    ))
    return build_transaction(
        view, moves, changes, origin=_origin(caller, symbol, "DISTRIBUTE", op_id), events=events
    )


def compute_transfer_mortgage(
    view: LedgerView,
    symbol: str,
    source: str,
    dest: str,
    op_id: str = "transfer",
) -> PendingTransaction:
    """
    Transfer ownership of the mortgage token. Future payments are gated to dest.

    Raises:
        Unauthorized: source does not hold the token
        Unauthorized: dest is a protocol wallet
        InvalidState: source == dest
    """
    terms, _ = load_mortgage(view, symbol)
    _require_owner(view, symbol, source, terms.token_id)
    if source == dest:
        raise InvalidState("cannot transfer a mortgage to its current owner")
    pool_wallet = load_staking_pool(view, terms.pool_symbol)[0].pool_wallet
    if dest in (SYSTEM_WALLET, terms.treasury_wallet, pool_wallet):
        raise Unauthorized(f"protocol wallet {dest} cannot hold a mortgage")
    moves = [Move(Decimal("1"), symbol, source, dest, f"transfer_{op_id}")]
    events = [ProtocolEvent.of("Transfer", source=source, dest=dest, token_id=terms.token_id)]
    return build_transaction(view, moves, origin=_origin(source, symbol, "TRANSFER", op_id), events=events)


def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    event_date: datetime,
    **kwargs
) -> PendingTransaction:
    """
    Generate moves and state updates for a mortgage lifecycle event.

    Args:
        view: Read-only ledger access
        symbol: Mortgage unit symbol
        event_type: Type of event:
            - PAYMENT: Next scheduled payment (requires 'payer')
            - APPRAISE: Record appraisal (requires 'caller', 'appraised_value')
            - DISTRIBUTE: Distribute appreciation (requires 'caller')
            - TRANSFER: Transfer ownership (requires 'source', 'dest')
        event_date: When the event occurs
        **kwargs: Event-specific parameters, plus an optional op_id

    Raises:
        ValueError: Unknown event type or missing parameter

    Example:
        tx = transact(view, "MORTGAGE-1", "PAYMENT", event_date, payer="alice")
    """
    op_id = kwargs.get('op_id', event_date.isoformat())

    def need(name: str) -> Any:
        value = kwargs.get(name)
        if value is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
        return value

    if event_type == 'PAYMENT':
        pending, _ = compute_payment(view, symbol, need('payer'), op_id)
        return pending
    elif event_type == 'APPRAISE':
        return compute_appraisal(view, symbol, need('caller'), need('appraised_value'), op_id)
    elif event_type == 'DISTRIBUTE':
        return compute_distribution(view, symbol, need('caller'), op_id)
    elif event_type == 'TRANSFER':
        return compute_transfer_mortgage(view, symbol, need('source'), need('dest'), op_id)
    else:
        raise ValueError(f"Unknown event type '{event_type}' for mortgage {symbol}")
