from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Union

from backend.ledger_records import (
    InstallmentTransaction,
    LedgerTransaction,
    RecurringTransaction,
    SingleTransaction,
)
from backend.schedule_math import add_months, clamp_day, installment_amount, round_currency


@dataclass(frozen=True)
class SingleOccurrence:
    id: str
    description: str
    amount: float
    type: str
    date: date
    category_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "date": self.date.isoformat(),
            "category_id": self.category_id,
        }


@dataclass(frozen=True)
class InstallmentOccurrence:
    id: str
    parent_id: str
    description: str
    amount: float
    type: str
    date: date
    installment_number: int
    total_installments: int
    category_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "date": self.date.isoformat(),
            "installment_number": self.installment_number,
            "total_installments": self.total_installments,
            "category_id": self.category_id,
        }


@dataclass(frozen=True)
class RecurringOccurrence(SingleOccurrence):
    pass


MonthlyViewEntry = Union[SingleOccurrence, InstallmentOccurrence, RecurringOccurrence]


@dataclass(frozen=True)
class MonthlySummary:
    total_revenue: float
    total_expense: float
    balance: float

    def to_dict(self) -> dict:
        return {
            "totalRevenue": self.total_revenue,
            "totalExpense": self.total_expense,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class MonthlyView:
    year: int
    month: int
    entries: List[MonthlyViewEntry]
    summary: MonthlySummary

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "transactions": [entry.to_dict() for entry in self.entries],
            "summary": self.summary.to_dict(),
        }


def compute_monthly_view(
    transactions: Iterable[LedgerTransaction], year: int, month: int
) -> MonthlyView:
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12.")
    entries: List[MonthlyViewEntry] = []
    for txn in transactions:
        entry = _project_transaction(txn, year, month)
        if entry is not None:
            entries.append(entry)
    return MonthlyView(
        year=year,
        month=month,
        entries=entries,
        summary=summarize_entries(entries),
    )


def summarize_entries(entries: Iterable[MonthlyViewEntry]) -> MonthlySummary:
    total_revenue = 0.0
    total_expense = 0.0
    for entry in entries:
        if entry.type == "revenue":
            total_revenue += entry.amount
        elif entry.type == "expense":
            total_expense += entry.amount
    balance = total_revenue - total_expense
    return MonthlySummary(
        total_revenue=round_currency(total_revenue),
        total_expense=round_currency(total_expense),
        balance=round_currency(balance),
    )


def _project_transaction(
    txn: LedgerTransaction, year: int, month: int
) -> Optional[MonthlyViewEntry]:
    if isinstance(txn, InstallmentTransaction):
        return _project_installment(txn, year, month)
    if isinstance(txn, RecurringTransaction):
        return _project_recurrence(txn, year, month)
    if isinstance(txn, SingleTransaction):
        if txn.date.year == year and txn.date.month == month:
            return SingleOccurrence(
                id=txn.id,
                description=txn.description,
                amount=txn.amount,
                type=txn.type,
                date=txn.date,
                category_id=txn.category_id,
            )
        return None
    raise TypeError(f"Unsupported transaction variant: {type(txn).__name__}")


def _project_installment(
    txn: InstallmentTransaction, year: int, month: int
) -> Optional[InstallmentOccurrence]:
    # Installments are one per month, so the target month can hold at most one.
    offset = (year - txn.start_date.year) * 12 + (month - txn.start_date.month)
    if not 0 <= offset < txn.total_installments:
        return None
    due = add_months(txn.start_date, offset)
    number = offset + 1
    return InstallmentOccurrence(
        id=f"{txn.id}_inst_{number}",
        parent_id=txn.id,
        description=f"{txn.description} ({number}/{txn.total_installments})",
        amount=installment_amount(txn.amount, txn.total_installments),
        type=txn.type,
        date=due,
        installment_number=number,
        total_installments=txn.total_installments,
        category_id=txn.category_id,
    )


def _project_recurrence(
    txn: RecurringTransaction, year: int, month: int
) -> Optional[RecurringOccurrence]:
    occurrence = clamp_day(year, month, txn.recurrence_start.day)
    if occurrence < txn.recurrence_start:
        return None
    return RecurringOccurrence(
        id=txn.id,
        description=txn.description,
        amount=txn.amount,
        type=txn.type,
        date=occurrence,
        category_id=txn.category_id,
    )
