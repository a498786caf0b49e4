"""
Units module - Settlement token, staking pool and mortgage units.

This module provides the unit factories and pure lifecycle functions:
- Settlement token (ERC20-like stablecoin) transfers and allowances
- Staking pool shares with share-based pool accounting
- Mortgage tokens with amortization and appraisal

All unit factories and related functions are re-exported here for convenience.
"""

# Settlement token
from .token import (
    parse_amount,
    create_settlement_token,
    get_allowance,
    compute_transfer,
    compute_approve,
    compute_transfer_from,
    compute_mint,
    transact as token_transact,
)

# Staking pool
from .staking_pool import (
    StakingPoolTerms,
    StakingPoolState,
    PoolMetrics,
    load_staking_pool,
    calculate_exchange_rate,
    calculate_shares_for_deposit,
    calculate_assets_for_withdrawal,
    calculate_deposit,
    calculate_withdrawal,
    calculate_inflow,
    calculate_pool_metrics,
    create_staking_pool_unit,
    get_pool_metrics,
    preview_deposit,
    preview_withdraw,
    check_pool_invariants,
    compute_deposit,
    compute_withdraw,
    compute_receive_interest,
    compute_receive_appreciation,
    transact as staking_pool_transact,
)

# Mortgages
from .mortgage import (
    MortgageTerms,
    MortgageState,
    MortgageRecord,
    Appraisal,
    PurchaseQuote,
    AmortizationRow,
    PaymentBreakdown,
    mortgage_symbol,
    load_mortgage,
    get_mortgage,
    owner_of,
    calculate_monthly_payment,
    calculate_payment_split,
    calculate_next_payment_due,
    calculate_amortization_schedule,
    calculate_purchase_quote,
    calculate_payment,
    calculate_appreciation_split,
    create_mortgage_unit,
    compute_purchase,
    compute_payment,
    compute_appraisal,
    compute_distribution,
    compute_transfer_mortgage,
    transact as mortgage_transact,
)

__all__ = [
    # Settlement token
    'parse_amount',
    'create_settlement_token',
    'get_allowance',
    'compute_transfer',
    'compute_approve',
    'compute_transfer_from',
    'compute_mint',
    'token_transact',
    # Staking pool
    'StakingPoolTerms',
    'StakingPoolState',
    'PoolMetrics',
    'load_staking_pool',
    'calculate_exchange_rate',
    'calculate_shares_for_deposit',
    'calculate_assets_for_withdrawal',
    'calculate_deposit',
    'calculate_withdrawal',
    'calculate_inflow',
    'calculate_pool_metrics',
    'create_staking_pool_unit',
    'get_pool_metrics',
    'preview_deposit',
    'preview_withdraw',
    'check_pool_invariants',
    'compute_deposit',
    'compute_withdraw',
    'compute_receive_interest',
    'compute_receive_appreciation',
    'staking_pool_transact',
    # Mortgages
    'MortgageTerms',
    'MortgageState',
    'MortgageRecord',
    'Appraisal',
    'PurchaseQuote',
    'AmortizationRow',
    'PaymentBreakdown',
    'mortgage_symbol',
    'load_mortgage',
    'get_mortgage',
    'owner_of',
    'calculate_monthly_payment',
    'calculate_payment_split',
    'calculate_next_payment_due',
    'calculate_amortization_schedule',
    'calculate_purchase_quote',
    'calculate_payment',
    'calculate_appreciation_split',
    'create_mortgage_unit',
    'compute_purchase',
    'compute_payment',
    'compute_appraisal',
    'compute_distribution',
    'compute_transfer_mortgage',
    'mortgage_transact',
]
