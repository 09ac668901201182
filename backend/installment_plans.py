from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Optional

from backend.ledger_records import InstallmentPlanRecord
from backend.schedule_math import elapsed_periods, installment_amount

STATUS_ACTIVE = "active"
STATUS_OVERDUE = "overdue"
STATUS_COMPLETED = "completed"


@dataclass(frozen=True)
class InstallmentPlan:
    id: str
    description: str
    total_amount: float
    installment_amount: float
    total_installments: int
    paid_installments: int
    remaining_installments: int
    start_date: date
    status: str
    type: str
    category_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "totalAmount": self.total_amount,
            "installmentAmount": self.installment_amount,
            "totalInstallments": self.total_installments,
            "paidInstallments": self.paid_installments,
            "remainingInstallments": self.remaining_installments,
            "startDate": self.start_date.isoformat(),
            "status": self.status,
            "type": self.type,
            "category_id": self.category_id,
        }


def compute_installment_plans(
    records: Iterable[InstallmentPlanRecord], as_of: date
) -> List[InstallmentPlan]:
    if isinstance(as_of, datetime):
        as_of = as_of.date()
    return [summarize_plan(record, as_of) for record in records]


def summarize_plan(txn: InstallmentPlanRecord, as_of: date) -> InstallmentPlan:
    total = txn.total_installments
    paid = txn.paid_installments
    return InstallmentPlan(
        id=txn.id,
        description=txn.description,
        total_amount=txn.amount,
        installment_amount=installment_amount(txn.amount, total),
        total_installments=total,
        paid_installments=paid,
        remaining_installments=max(0, total - paid),
        start_date=txn.start_date,
        status=plan_status(txn.start_date, total, paid, as_of),
        type=txn.type,
        category_id=txn.category_id,
    )


def plan_status(start_date: date, total_installments: int, paid_installments: int, as_of: date) -> str:
    if paid_installments >= total_installments:
        return STATUS_COMPLETED
    if elapsed_periods(start_date, as_of) > paid_installments:
        return STATUS_OVERDUE
    return STATUS_ACTIVE
