"""
ancient_lending - Mortgage ledger and staking pool economic model

A Decimal-based, double-entry simulation of the Ancient Lending protocol:
property purchases mint mortgage tokens, payments split into principal and
interest, interest and appreciation flow into a share-based staking pool.

Usage:
    from decimal import Decimal
    from ancient_lending import LendingProtocol

    protocol = LendingProtocol()
    protocol.token.mint("alice", Decimal("50000"))
    token_id = protocol.mortgages.purchase_property("alice", Decimal("150000"))
    breakdown = protocol.mortgages.make_payment("alice", token_id)

    protocol.token.mint("bob", Decimal("1000"))
    shares = protocol.pool.deposit("bob", Decimal("1000"))
    metrics = protocol.pool.get_pool_metrics()
"""

__version__ = "0.1.0"

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    ProtocolEvent,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    ProtocolError,
    InvalidAmount,
    InvalidState,
    AlreadyDistributed,
    InsufficientShares,
    InsufficientBalance,
    InsufficientAllowance,
    Unauthorized,
    TransactionRejected,
    ConfigurationError,
    whole_unit_transfer_rule,
    stablecoin,
    SYSTEM_WALLET,
    UNIT_TYPE_STABLECOIN,
    UNIT_TYPE_POOL_SHARE,
    UNIT_TYPE_MORTGAGE,
    QUANTITY_EPSILON,
    Positions,
    BalanceMap,
    UnitState,
)

# Ledger
from .ledger import Ledger

# Configuration
from .config import ProtocolConfig, PaymentModel, NegativeAppreciationPolicy

# Logging
from .logging import setup_logging, get_logger

# Units
from .units import (
    PoolMetrics,
    MortgageRecord,
    Appraisal,
    PurchaseQuote,
    AmortizationRow,
    PaymentBreakdown,
)

# Facades
from .protocol import LendingProtocol, MortgageLedger, StakingPool, SettlementToken

__all__ = [
    '__version__',
    # Core
    'LedgerView',
    'Move',
    'Transaction',
    'PendingTransaction',
    'ProtocolEvent',
    'TransactionOrigin',
    'OriginType',
    'build_transaction',
    'empty_pending_transaction',
    'Unit',
    'UnitStateChange',
    'ExecuteResult',
    'whole_unit_transfer_rule',
    'stablecoin',
    'SYSTEM_WALLET',
    'UNIT_TYPE_STABLECOIN',
    'UNIT_TYPE_POOL_SHARE',
    'UNIT_TYPE_MORTGAGE',
    'QUANTITY_EPSILON',
    'Positions',
    'BalanceMap',
    'UnitState',
    # Exceptions
    'LedgerError',
    'TransferRuleViolation',
    'UnitNotRegistered',
    'WalletNotRegistered',
    'ProtocolError',
    'InvalidAmount',
    'InvalidState',
    'AlreadyDistributed',
    'InsufficientShares',
    'InsufficientBalance',
    'InsufficientAllowance',
    'Unauthorized',
    'TransactionRejected',
    'ConfigurationError',
    # Ledger
    'Ledger',
    # Configuration
    'ProtocolConfig',
    'PaymentModel',
    'NegativeAppreciationPolicy',
    # Logging
    'setup_logging',
    'get_logger',
    # Records
    'PoolMetrics',
    'MortgageRecord',
    'Appraisal',
    'PurchaseQuote',
    'AmortizationRow',
    'PaymentBreakdown',
    # Facades
    'LendingProtocol',
    'MortgageLedger',
    'StakingPool',
    'SettlementToken',
]
