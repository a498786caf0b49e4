#!/usr/bin/env python3
"""
demo.py - Walk-through: the Ancient Lending protocol step by step

A scripted tour of the mortgage and staking pool model, mirroring the mock
test site: fund wallets, buy a property, make payments, stake in the pool,
appraise and distribute appreciation, then audit the ledger.

WHAT YOU'LL SEE:
  1-2:  Setup         - Economic parameters, faucet funding
  3-4:  Mortgages     - Purchase quote, purchase, monthly payments
  5:    Staking pool  - Bootstrap deposit, interest inflow, exchange rate
  6:    Appraisal     - Appreciation split between treasury and stakers
  7:    Rejections    - Typed errors leave state untouched
  8:    Audit         - Event log, conservation, invariants, replay

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from ancient_lending import (
    LendingProtocol, ProtocolConfig, ProtocolError,
    setup_logging,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walk-through. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Initial funding (faucet)
    alice_initial: Decimal = Decimal("60000")
    bob_initial: Decimal = Decimal("5000")
    carol_initial: Decimal = Decimal("5000")

    # Property
    property_price: Decimal = Decimal("150000")
    payments_to_make: int = 12
    appraised_value: Decimal = Decimal("165000")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


# ============================================================================
# STEPS
# ============================================================================

def step_01_parameters() -> LendingProtocol:
    step_header(1, "Economic Parameters",
        "One immutable configuration object is shared by both ledgers.")

    protocol = LendingProtocol(ProtocolConfig.from_env(), initial_time=CONFIG.start_time)
    for key, value in protocol.parameters().items():
        print(f"  {key:<24} {value}")
    return protocol


def step_02_funding(protocol: LendingProtocol) -> LendingProtocol:
    step_header(2, "Faucet Funding",
        "The settlement token is issued from the system wallet, like MockUSDT.")

    protocol.token.mint("alice", CONFIG.alice_initial)
    protocol.token.mint("bob", CONFIG.bob_initial)
    protocol.token.mint("carol", CONFIG.carol_initial)
    for wallet in ("alice", "bob", "carol"):
        print(f"  {wallet:<8} {money(protocol.token.balance_of(wallet))}")
    return protocol


def step_03_purchase(protocol: LendingProtocol) -> int:
    step_header(3, "Property Purchase",
        "Down payment and platform fee go to the treasury; a mortgage token is minted.")

    quote = protocol.mortgages.quote_purchase(CONFIG.property_price)
    section_header("Quote")
    print(f"  Property price:    {money(quote.property_price)}")
    print(f"  Down payment:      {money(quote.down_payment)}")
    print(f"  Platform fee:      {money(quote.platform_fee)}")
    print(f"  Total due now:     {money(quote.total_due)}")
    print(f"  Loan amount:       {money(quote.loan_amount)}")
    print(f"  Monthly payment:   {money(quote.monthly_payment)}")
    print(f"  Total interest:    {money(quote.total_interest)}")

    token_id = protocol.mortgages.purchase_property("alice", CONFIG.property_price)
    record = protocol.mortgages.get_mortgage(token_id)
    section_header("Mortgage created")
    print(f"  Token id:          {token_id} (owner {protocol.mortgages.owner_of(token_id)})")
    print(f"  Active:            {record.is_active}")
    print(f"  Treasury balance:  {money(protocol.token.balance_of(protocol.config.treasury_wallet))}")
    return token_id


def step_04_payments(protocol: LendingProtocol, token_id: int) -> None:
    step_header(4, "Monthly Payments",
        "Each payment splits into interest and principal; net interest feeds the pool.")

    print(f"  {'#':>3} {'payment':>12} {'interest':>12} {'principal':>12} {'remaining':>14}")
    for month in range(CONFIG.payments_to_make):
        protocol.advance_time(CONFIG.start_time + timedelta(days=30 * (month + 1)))
        b = protocol.mortgages.make_payment("alice", token_id)
        print(f"  {b.payment_number:>3} {b.payment:>12.2f} {b.interest:>12.2f} "
              f"{b.principal:>12.2f} {b.remaining_principal:>14.2f}")

    record = protocol.mortgages.get_mortgage(token_id)
    section_header("Progress")
    print(f"  Payments made:     {record.payments_made} / {record.term_months} "
          f"({record.progress_percent:.1f}%)")
    print(f"  Interest paid:     {money(record.total_interest_paid)}")


def step_05_staking(protocol: LendingProtocol) -> None:
    step_header(5, "Staking Pool",
        "Shares are minted at the exchange rate; inflows raise the rate.")

    metrics = protocol.pool.get_pool_metrics()
    print(f"  Pool already holds {money(metrics.total_assets)} of interest with no shares outstanding.")

    shares = protocol.pool.deposit("bob", Decimal("1000"))
    print(f"  bob deposits $1,000   -> {shares} shares")
    print(f"  Exchange rate:         {protocol.pool.exchange_rate():.6f}")

    protocol.pool.receive_interest("bob", Decimal("100"))
    print(f"  $100 interest inflow  -> rate {protocol.pool.exchange_rate():.6f}")

    shares = protocol.pool.deposit("carol", Decimal("1100"))
    print(f"  carol deposits $1,100 -> {shares} shares")


def step_06_appraisal(protocol: LendingProtocol, token_id: int) -> None:
    step_header(6, "Appraisal and Distribution",
        "Appreciation is split between treasury and stakers, at most once.")

    appraiser = protocol.config.appraiser_wallet
    before = protocol.pool.exchange_rate()
    appraisal = protocol.mortgages.appraise_property(appraiser, token_id, CONFIG.appraised_value)
    print(f"  Appraised value:   {money(appraisal.appraised_value)}")
    print(f"  Appreciation:      {money(appraisal.appreciation)}")

    appraisal = protocol.mortgages.distribute_appreciation(appraiser, token_id)
    print(f"  Treasury share:    {money(appraisal.treasury_share)}")
    print(f"  Staker share:      {money(appraisal.staker_share)}")
    print(f"  Exchange rate:     {before:.6f} -> {protocol.pool.exchange_rate():.6f}")


def step_07_rejections(protocol: LendingProtocol, token_id: int) -> None:
    step_header(7, "Rejections",
        "Every failed operation raises a typed error and changes nothing.")

    attempts = [
        ("distribute twice", lambda: protocol.mortgages.distribute_appreciation(
            protocol.config.appraiser_wallet, token_id)),
        ("bob pays alice's mortgage", lambda: protocol.mortgages.make_payment("bob", token_id)),
        ("carol burns too many shares", lambda: protocol.pool.withdraw("carol", Decimal("5000"))),
        ("deposit below minimum", lambda: protocol.pool.deposit("carol", Decimal("50"))),
        ("pay a mortgage that does not exist", lambda: protocol.mortgages.make_payment("alice", 99)),
    ]
    log_size = len(protocol.ledger.transaction_log)
    for label, attempt in attempts:
        try:
            attempt()
            print(f"  {label:<36} unexpectedly succeeded")
        except ProtocolError as e:
            print(f"  {label:<36} {type(e).__name__}")
    print(f"\n  Transaction log unchanged: {len(protocol.ledger.transaction_log) == log_size}")


def step_08_audit(protocol: LendingProtocol) -> None:
    step_header(8, "Audit",
        "The event log, conservation and replay all agree.")

    section_header("Events")
    counts = {}
    for event in protocol.events:
        counts[event.name] = counts.get(event.name, 0) + 1
    for name, count in sorted(counts.items()):
        print(f"  {name:<26} {count}")

    section_header("Checks")
    conservation = protocol.ledger.verify_double_entry()
    print(f"  Double entry holds:    {conservation['valid']}")
    print(f"  Invariant violations:  {protocol.verify_invariants() or 'none'}")
    replayed = protocol.ledger.replay()
    same = all(
        replayed.get_balance(w, protocol.config.currency) == protocol.ledger.get_balance(w, protocol.config.currency)
        for w in protocol.ledger.registered_wallets
    )
    print(f"  Replay matches:        {same}")
    print(f"  Replayed events:       {len(replayed.event_log)} == {len(protocol.events)}")


def main():
    """Run the complete walk-through."""
    setup_logging("WARNING")
    print("=" * 70)
    print("       ANCIENT LENDING - PROTOCOL WALK-THROUGH")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    protocol = step_01_parameters()
    wait_for_enter()
    step_02_funding(protocol)
    wait_for_enter()
    token_id = step_03_purchase(protocol)
    wait_for_enter()
    step_04_payments(protocol, token_id)
    wait_for_enter()
    step_05_staking(protocol)
    wait_for_enter()
    step_06_appraisal(protocol, token_id)
    wait_for_enter()
    step_07_rejections(protocol, token_id)
    wait_for_enter()
    step_08_audit(protocol)

    print("\n" + "=" * 70)
    print("       WALK-THROUGH COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()
