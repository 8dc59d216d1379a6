"""
Amortization Calculator

Single source of truth for loan math: the level monthly payment quote, the
interest/principal split of one installment, and the full repayment
schedule. Loan application, disbursement and the payment fallback all call
into this module instead of re-deriving the formulas.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import List, Tuple
import calendar

from .errors import ValidationError
from .money import ZERO, round_money, positive_amount, validate_rate, monthly_rate


@dataclass(frozen=True)
class LoanQuote:
    """Level-payment terms for a principal, rate and term"""
    principal: Decimal
    annual_interest_rate: Decimal
    term_months: int
    monthly_payment: Decimal
    total_repayment: Decimal
    total_interest: Decimal

    @property
    def monthly_rate(self) -> Decimal:
        return monthly_rate(self.annual_interest_rate)


@dataclass(frozen=True)
class ScheduledInstallment:
    """One projected month of the repayment schedule"""
    sequence: int
    due_date: date
    amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    balance_after: Decimal


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _validate_term(term_months) -> int:
    if isinstance(term_months, bool) or not isinstance(term_months, int):
        raise ValidationError(f"term_months must be an integer, got {term_months!r}")
    if term_months <= 0:
        raise ValidationError(f"term_months must be positive, got {term_months}")
    return term_months


def level_payment(principal: Decimal, annual_rate: Decimal, term_months: int) -> Decimal:
    """
    Unrounded level monthly payment

    Standard formula P * r(1+r)^n / ((1+r)^n - 1), degrading to P / n for a
    zero rate.
    """
    rate = monthly_rate(annual_rate)
    if rate == ZERO:
        return principal / Decimal(term_months)
    factor = (Decimal('1') + rate) ** term_months
    return principal * (rate * factor) / (factor - Decimal('1'))


def compute_schedule(principal, annual_rate, term_months: int) -> LoanQuote:
    """
    Quote a loan

    Args:
        principal: Amount borrowed (> 0)
        annual_rate: Annual rate as a fraction, e.g. Decimal('0.15')
        term_months: Number of monthly installments (> 0)

    Returns:
        LoanQuote with monthly payment, total repayment and total interest,
        each rounded half-up to cents

    Raises:
        ValidationError: On invalid input or when the payment would not cover
            one month's interest (the loan would never amortize)
    """
    principal = positive_amount(principal, "principal")
    annual_rate = validate_rate(annual_rate)
    term_months = _validate_term(term_months)

    monthly_payment = round_money(level_payment(principal, annual_rate, term_months))
    first_interest = round_money(principal * monthly_rate(annual_rate))
    if monthly_payment <= ZERO or (first_interest > ZERO and monthly_payment <= first_interest):
        raise ValidationError(
            f"Monthly payment {monthly_payment} does not cover interest of {first_interest}; "
            f"loan would not amortize"
        )

    # Rounding the payment down can leave payment x term a cent short of the principal
    total_repayment = max(round_money(monthly_payment * term_months), principal)
    return LoanQuote(
        principal=principal,
        annual_interest_rate=annual_rate,
        term_months=term_months,
        monthly_payment=monthly_payment,
        total_repayment=total_repayment,
        total_interest=total_repayment - principal
    )


def split_installment(balance: Decimal, annual_rate: Decimal,
                      monthly_payment: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Interest and principal of the next installment on an outstanding balance

    Returns:
        (interest_portion, principal_portion); the principal never exceeds
        the balance and is clamped at zero.
    """
    interest = round_money(balance * monthly_rate(annual_rate))
    principal = min(monthly_payment - interest, balance)
    if principal < ZERO:
        principal = ZERO
    return interest, principal


def build_schedule(quote: LoanQuote, start_date: date) -> List[ScheduledInstallment]:
    """
    Project the repayment schedule of a quoted loan

    One installment per month starting one month after ``start_date``.
    Generation stops as soon as the balance is repaid, and the last
    installment takes whatever principal is left so the principal portions
    sum exactly to the loan principal.
    """
    schedule: List[ScheduledInstallment] = []
    balance = quote.principal

    for sequence in range(1, quote.term_months + 1):
        interest, principal = split_installment(
            balance, quote.annual_interest_rate, quote.monthly_payment
        )
        if sequence == quote.term_months:
            principal = balance
        balance = balance - principal

        schedule.append(ScheduledInstallment(
            sequence=sequence,
            due_date=add_months(start_date, sequence),
            amount=principal + interest,
            principal_portion=principal,
            interest_portion=interest,
            balance_after=balance
        ))

        if balance <= ZERO:
            break

    return schedule
