#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Loan Ledger Step by Step

A walk through the collateralized loan lifecycle. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup       - Collaborators, the loan ledger, collateral configuration
  4-6:   Lending     - Opening a loan, the one-loan rule, repayment
  7-9:   Safety      - Boundaries, rollback, reentrancy
  10:    Audit       - Notifications, history, custody and conservation checks

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from loanbook import (
    LoanLedger, CurrencyLedger, CollectionRegistry,
    LoanBookError, Reentrant,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    owner: str = "admin"

    # Collateral class
    collection: str = "punks"
    valuation: Decimal = Decimal("300")

    # Funding
    ledger_liquidity: Decimal = Decimal("1000")

    # Loan
    borrower: str = "bob"
    principal: Decimal = Decimal("300")
    loan_days: int = 30


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_positions(book: LoanLedger, usd: CurrencyLedger, punks: CollectionRegistry):
    print(f"Ledger liquidity:      {book.available_liquidity()} {usd.symbol}")
    print(f"Outstanding principal: {book.outstanding_principal()} {usd.symbol}")
    print(f"{CONFIG.borrower} balance:           {usd.balance_of(CONFIG.borrower)} {usd.symbol}")
    print(f"{CONFIG.borrower} items:             {punks.items_of(CONFIG.borrower)}")
    print(f"Ledger custody:        {punks.items_of(book.address)}")
    print(f"Active loans:          {book.active_loans()}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_collaborators():
    """Create the currency ledger and the collection registry."""
    step_header(1, "The Collaborators",
        "The loan ledger holds no assets itself. Two external books do.")

    print("""
    A loan moves two kinds of assets:

    1. CURRENCY   - Fungible, tracked by balance (CurrencyLedger)
    2. COLLATERAL - Unique items, tracked by custodian (CollectionRegistry)

    The loan ledger only talks to them through two protocols,
    FungibleAssetLedger and UniqueAssetRegistry.
    """)

    wait_for_enter()

    print('>>> usd = CurrencyLedger("USD", "US Dollar")')
    usd = CurrencyLedger("USD", "US Dollar", verbose=True)
    print(f'>>> punks = CollectionRegistry("{CONFIG.collection}")')
    punks = CollectionRegistry(CONFIG.collection, verbose=True)

    section_header("Mint the borrower's items")
    print(f'>>> punks.mint("{CONFIG.borrower}", 7)')
    punks.mint(CONFIG.borrower, 7)
    print(f'>>> punks.mint("{CONFIG.borrower}", 9)')
    punks.mint(CONFIG.borrower, 9)

    return usd, punks


def step_02_loan_ledger(usd: CurrencyLedger):
    """Create the loan ledger and fund it."""
    step_header(2, "The Loan Ledger",
        "The ledger lends from its own wallet address.")

    print(f'>>> book = LoanLedger("{CONFIG.owner}", usd, initial_time=datetime(2025, 1, 1, 9, 0))')
    book = LoanLedger(CONFIG.owner, usd, initial_time=CONFIG.start_time, verbose=True)

    section_header("Fund the ledger")
    print(f'>>> usd.mint(book.address, Decimal("{CONFIG.ledger_liquidity}"))')
    usd.mint(book.address, CONFIG.ledger_liquidity)

    section_header("Initial State")
    print(f"Ledger address: {book.address}")
    print(f"Owner:          {book.owner}")
    print(f"Current time:   {book.current_time}")
    print(f"Liquidity:      {book.available_liquidity()} {usd.symbol}")

    return book


def step_03_configure(book: LoanLedger, punks: CollectionRegistry):
    """Approve the collateral class and set its valuation."""
    step_header(3, "Collateral Configuration",
        "Only the owner decides what can be pledged and for how much.")

    section_header("A stranger tries first")
    print(f'>>> book.set_approved("mallory", punks, True)')
    try:
        book.set_approved("mallory", punks, True)
    except LoanBookError as e:
        print(f"Raised {type(e).__name__}: {e}")

    section_header("The owner configures the class")
    print(f'>>> book.set_approved("{CONFIG.owner}", punks, True)')
    book.set_approved(CONFIG.owner, punks, True)
    print(f'>>> book.set_valuation("{CONFIG.owner}", "{CONFIG.collection}", Decimal("{CONFIG.valuation}"))')
    book.set_valuation(CONFIG.owner, CONFIG.collection, CONFIG.valuation)

    print(f"\nConfig: {book.collateral_config(CONFIG.collection)}")

    section_header("Key Insight")
    print("""
    The valuation is the most that can be borrowed against ONE item of the
    class. It can be overwritten at any time; loans already open keep their
    principal.
    """)

    return book


# ============================================================================
# PHASE 2: LENDING (Steps 4-6)
# ============================================================================

def step_04_open_loan(book: LoanLedger, usd: CurrencyLedger, punks: CollectionRegistry):
    """Open a loan against item #7."""
    step_header(4, "Opening a Loan",
        "Collateral goes in, principal comes out, in one step.")

    print(f'>>> book.open_loan("{CONFIG.borrower}", "{CONFIG.collection}", 7, Decimal("{CONFIG.principal}"))')
    loan = book.open_loan(CONFIG.borrower, CONFIG.collection, 7, CONFIG.principal)

    section_header("Result")
    print(f"Loan: {loan}")
    show_positions(book, usd, punks)

    return loan


def step_05_one_loan_rule(book: LoanLedger):
    """Try a second loan while the first is active."""
    step_header(5, "One Active Loan per Borrower",
        "A second loan is rejected before anything moves.")

    print(f'>>> book.open_loan("{CONFIG.borrower}", "{CONFIG.collection}", 9, Decimal("50"))')
    try:
        book.open_loan(CONFIG.borrower, CONFIG.collection, 9, Decimal("50"))
    except LoanBookError as e:
        print(f"Raised {type(e).__name__}")

    print(f"\nStill one loan: {book.get_loan(CONFIG.borrower)}")


def step_06_repay(book: LoanLedger, usd: CurrencyLedger, punks: CollectionRegistry):
    """Repay the loan in full."""
    step_header(6, "Repayment",
        "The ledger pulls the principal and releases the collateral.")

    later = CONFIG.start_time + timedelta(days=CONFIG.loan_days)
    print(f">>> book.advance_time({later!r})")
    book.advance_time(later)

    print("""
    Repayment is a PULL: the borrower first allows the ledger to take the
    principal, then asks for repayment.
    """)
    print(f'>>> usd.approve("{CONFIG.borrower}", book.address, Decimal("{CONFIG.principal}"))')
    usd.approve(CONFIG.borrower, book.address, CONFIG.principal)
    print(f'>>> book.repay_loan("{CONFIG.borrower}")')
    closed = book.repay_loan(CONFIG.borrower)

    section_header("Result")
    print(f"Closed: {closed}")
    show_positions(book, usd, punks)

    return closed


# ============================================================================
# PHASE 3: SAFETY (Steps 7-9)
# ============================================================================

def step_07_boundaries(book: LoanLedger):
    """Show the valuation and liquidity limits."""
    step_header(7, "Boundaries",
        "Valuation is inclusive; liquidity must strictly exceed the loan.")

    over = CONFIG.valuation + Decimal("0.01")
    print(f'>>> book.open_loan("{CONFIG.borrower}", "{CONFIG.collection}", 9, Decimal("{over}"))')
    try:
        book.open_loan(CONFIG.borrower, CONFIG.collection, 9, over)
    except LoanBookError as e:
        print(f"Raised {type(e).__name__}")

    print("""
    With 1000 in the ledger, a valuation of 1000 would still not allow a
    loan of 1000: the ledger never lends out its last unit.
    """)


def step_08_rollback(book: LoanLedger, usd: CurrencyLedger, punks: CollectionRegistry):
    """Make the repayment pull fail and watch the rollback."""
    step_header(8, "Rollback",
        "If any transfer fails, every change of the operation is undone.")

    book.open_loan(CONFIG.borrower, CONFIG.collection, 9, Decimal("100"))

    section_header("Repay WITHOUT approving the pull")
    print(f'>>> book.repay_loan("{CONFIG.borrower}")')
    try:
        book.repay_loan(CONFIG.borrower)
    except LoanBookError as e:
        print(f"Raised {type(e).__name__}")

    print(f"\nLoan still active: {book.get_loan(CONFIG.borrower)}")
    print(f"Item #9 custodian: {punks.owner_of(9)}")

    usd.approve(CONFIG.borrower, book.address, Decimal("100"))
    book.repay_loan(CONFIG.borrower)


def step_09_reentrancy(book: LoanLedger, punks: CollectionRegistry):
    """A hostile collection calls back into the ledger mid-transfer."""
    step_header(9, "Reentrancy",
        "Nested calls into the ledger are refused while an operation runs.")

    attempts = []

    def hostile_receiver(source, dest, item_id):
        try:
            book.open_loan(CONFIG.borrower, CONFIG.collection, 9, Decimal("1"))
        except Reentrant as e:
            attempts.append(e)

    remove = punks.add_receiver_hook(hostile_receiver)
    book.open_loan(CONFIG.borrower, CONFIG.collection, 7, Decimal("50"))
    remove()

    print(f"Nested attempts refused: {len(attempts)}")
    for e in attempts:
        print(f"  Reentrant: {e}")
    print(f"Active loans: {book.active_loans()}")


# ============================================================================
# PHASE 4: AUDIT (Step 10)
# ============================================================================

def step_10_audit(book: LoanLedger, usd: CurrencyLedger):
    """Read the notification stream and run the checks."""
    step_header(10, "Audit Trail",
        "Every committed change left a notification; the books balance.")

    section_header("Notifications")
    for n in book.notifications:
        print(f"  #{n.sequence:<3} {n.kind:<22} {n.timestamp}")

    section_header("Loan History")
    for loan in book.loan_history():
        print(f"  {loan}")

    section_header("Checks")
    print(f"verify_custody():       {book.verify_custody()}")
    print(f"verify_conservation():  {usd.verify_conservation()}")
    total = book.available_liquidity() + book.outstanding_principal()
    print(f"liquidity + principal:  {total} (funded with {CONFIG.ledger_liquidity})")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       LOANBOOK v1.0 - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print("""
    Welcome! This tutorial walks through a collateralized loan.

    PHASES:
      1-3:   Setup    - Collaborators, loan ledger, configuration
      4-6:   Lending  - Open, one-loan rule, repay
      7-9:   Safety   - Boundaries, rollback, reentrancy
      10:    Audit    - Notifications, history, checks
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    usd, punks = step_01_collaborators()
    wait_for_enter()

    book = step_02_loan_ledger(usd)
    wait_for_enter()

    step_03_configure(book, punks)
    wait_for_enter()

    step_04_open_loan(book, usd, punks)
    wait_for_enter()

    step_05_one_loan_rule(book)
    wait_for_enter()

    step_06_repay(book, usd, punks)
    wait_for_enter()

    step_07_boundaries(book)
    wait_for_enter()

    step_08_rollback(book, usd, punks)
    wait_for_enter()

    step_09_reentrancy(book, punks)
    wait_for_enter()

    step_10_audit(book, usd)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - The ledger lends from its own address and holds collateral in custody
      - Only the owner configures collateral classes
      - One active loan per borrower; repayment is a full, pulled principal
      - Every operation is all-or-nothing and refuses nested calls

    Next steps:
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
