"""
config.py - Economic parameters of the lending protocol

ProtocolConfig is the single immutable policy object shared by the mortgage
ledger and the staking pool. It is passed in at construction; nothing reads
rates or ratios from module globals.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional
import os

from .core import BPS_DENOMINATOR, ConfigurationError, SYSTEM_WALLET, to_decimal


class PaymentModel(Enum):
    """How the fixed monthly payment is derived from the loan amount."""
    AMORTIZING = "amortizing"   # L * r / (1 - (1 + r) ** -n)
    FLAT = "flat"               # L * flat_monthly_rate


class NegativeAppreciationPolicy(Enum):
    """What distribute_appreciation does when appraisal <= purchase price."""
    ZERO = "zero"       # distribute nothing, mark distributed
    REJECT = "reject"   # raise InvalidAmount


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Immutable economic parameters.

    Attributes:
        down_payment_bps: Down payment as basis points of the property price
        platform_fee_bps: Platform fee as basis points of the property price
        interest_rate_bps: Annual interest rate in basis points
        term_months: Number of scheduled monthly payments
        management_fee_bps: Treasury cut of interest routed to the pool
        min_deposit: Minimum staking deposit in settlement units
        treasury_share_bps: Treasury part of positive appreciation
        negative_appreciation: Policy for appreciation <= 0
        payment_model: Monthly payment formula
        flat_monthly_rate: Monthly factor for PaymentModel.FLAT
        currency: Settlement asset symbol
        currency_decimals: Settlement asset precision
        share_symbol: Staking pool share symbol
        share_decimals: Share precision
        treasury_wallet: Receives down payments, fees, principal and treasury appreciation
        pool_wallet: Custody wallet of pool assets
        appraiser_wallet: The only caller allowed to appraise and distribute
        mortgage_prefix: Mortgage token unit symbol prefix
    """
    down_payment_bps: int = 2000
    platform_fee_bps: int = 300
    interest_rate_bps: int = 800
    term_months: int = 120
    management_fee_bps: int = 200
    min_deposit: Decimal = Decimal("100")
    treasury_share_bps: int = 3000
    negative_appreciation: NegativeAppreciationPolicy = NegativeAppreciationPolicy.ZERO
    payment_model: PaymentModel = PaymentModel.AMORTIZING
    flat_monthly_rate: Decimal = Decimal("0.0121")
    currency: str = "USDT"
    currency_decimals: int = 6
    share_symbol: str = "ASP"
    share_decimals: int = 18
    treasury_wallet: str = "treasury"
    pool_wallet: str = "staking_pool"
    appraiser_wallet: str = "treasury"
    mortgage_prefix: str = "MORTGAGE"

    def __post_init__(self):
        try:
            object.__setattr__(self, 'min_deposit', to_decimal(self.min_deposit))
            object.__setattr__(self, 'flat_monthly_rate', to_decimal(self.flat_monthly_rate))
            object.__setattr__(
                self, 'negative_appreciation', NegativeAppreciationPolicy(self.negative_appreciation)
            )
            object.__setattr__(self, 'payment_model', PaymentModel(self.payment_model))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise ConfigurationError(str(e)) from e

        for name in ('down_payment_bps', 'platform_fee_bps', 'interest_rate_bps',
                     'management_fee_bps', 'treasury_share_bps'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be an int, got {value!r}")
            if not 0 <= value <= 10000:
                raise ConfigurationError(f"{name} must be in [0, 10000], got {value}")
        if self.down_payment_bps == 10000:
            raise ConfigurationError("down_payment_bps of 10000 leaves nothing to finance")
        if self.term_months <= 0:
            raise ConfigurationError(f"term_months must be positive, got {self.term_months}")
        if self.min_deposit <= 0:
            raise ConfigurationError(f"min_deposit must be positive, got {self.min_deposit}")
        if self.flat_monthly_rate <= 0:
            raise ConfigurationError(f"flat_monthly_rate must be positive, got {self.flat_monthly_rate}")
        if self.currency_decimals < 0 or self.share_decimals < 0:
            raise ConfigurationError("decimals must be non-negative")
        for name in ('currency', 'share_symbol', 'treasury_wallet', 'pool_wallet',
                     'appraiser_wallet', 'mortgage_prefix'):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} cannot be empty")
        if self.treasury_wallet == self.pool_wallet:
            raise ConfigurationError("treasury_wallet and pool_wallet must differ")
        if SYSTEM_WALLET in (self.treasury_wallet, self.pool_wallet):
            raise ConfigurationError(f"{SYSTEM_WALLET!r} is reserved for issuance")
        if self.currency == self.share_symbol:
            raise ConfigurationError("currency and share_symbol must differ")

    # ------------------------------------------------------------------------
    # Derived read-only values
    # ------------------------------------------------------------------------

    @property
    def down_payment_ratio(self) -> Decimal:
        return Decimal(self.down_payment_bps) / BPS_DENOMINATOR

    @property
    def platform_fee_ratio(self) -> Decimal:
        return Decimal(self.platform_fee_bps) / BPS_DENOMINATOR

    @property
    def annual_rate(self) -> Decimal:
        return Decimal(self.interest_rate_bps) / BPS_DENOMINATOR

    @property
    def monthly_rate(self) -> Decimal:
        """interest_rate_bps / 10000 / 12, unrounded."""
        return self.annual_rate / Decimal(12)

    def to_dict(self) -> Dict[str, Any]:
        """Read-only projection of the configuration constants."""
        return {
            'down_payment_ratio': self.down_payment_ratio,
            'platform_fee_ratio': self.platform_fee_ratio,
            'interest_rate_bps': self.interest_rate_bps,
            'term_months': self.term_months,
            'management_fee_bps': self.management_fee_bps,
            'min_deposit': self.min_deposit,
            'treasury_share_bps': self.treasury_share_bps,
            'payment_model': self.payment_model.value,
            'negative_appreciation': self.negative_appreciation.value,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProtocolConfig":
        """
        Create config from ANCIENT_* environment variables.

        Unset variables fall back to the defaults. Unparseable values raise
        ConfigurationError.

        Example:
            ANCIENT_INTEREST_RATE_BPS=650 ANCIENT_PAYMENT_MODEL=flat python demo.py
        """
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        int_fields = ('down_payment_bps', 'platform_fee_bps', 'interest_rate_bps', 'term_months',
                      'management_fee_bps', 'treasury_share_bps', 'currency_decimals',
                      'share_decimals')
        decimal_fields = ('min_deposit', 'flat_monthly_rate')
        str_fields = ('currency', 'share_symbol', 'treasury_wallet', 'pool_wallet',
                      'appraiser_wallet', 'mortgage_prefix')

        try:
            for name in int_fields:
                raw = env.get(f"ANCIENT_{name.upper()}")
                if raw is not None:
                    kwargs[name] = int(raw)
            for name in decimal_fields:
                raw = env.get(f"ANCIENT_{name.upper()}")
                if raw is not None:
                    kwargs[name] = Decimal(raw)
            if env.get("ANCIENT_PAYMENT_MODEL"):
                kwargs['payment_model'] = PaymentModel(env["ANCIENT_PAYMENT_MODEL"].lower())
            if env.get("ANCIENT_NEGATIVE_APPRECIATION"):
                kwargs['negative_appreciation'] = NegativeAppreciationPolicy(
                    env["ANCIENT_NEGATIVE_APPRECIATION"].lower()
                )
        except (ValueError, ArithmeticError) as e:
            raise ConfigurationError(f"Invalid ANCIENT_* environment value: {e}") from e

        for name in str_fields:
            raw = env.get(f"ANCIENT_{name.upper()}")
            if raw is not None:
                kwargs[name] = raw

        return cls(**kwargs)
