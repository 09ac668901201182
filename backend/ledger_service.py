from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Protocol

from backend.installment_plans import InstallmentPlan, compute_installment_plans
from backend.ledger_records import InstallmentPlanRecord, LedgerTransaction
from backend.monthly_view import MonthlyView, compute_monthly_view

logger = logging.getLogger(__name__)


class TransactionSource(Protocol):
    def fetch_candidate_transactions(
        self, user_id: str, year: int, month: int
    ) -> List[LedgerTransaction]:
        ...

    def fetch_installment_transactions(self, user_id: str) -> List[InstallmentPlanRecord]:
        ...


class LedgerService:
    """Read-only projections over a user's stored transactions."""

    def __init__(self, source: TransactionSource) -> None:
        self.source = source

    def monthly_view(self, user_id: str, year: int, month: int) -> MonthlyView:
        candidates = self.source.fetch_candidate_transactions(user_id, year, month)
        view = compute_monthly_view(candidates, year, month)
        logger.debug(
            "Monthly view %04d-%02d for user %s: %d candidates, %d entries",
            year,
            month,
            user_id,
            len(candidates),
            len(view.entries),
        )
        return view

    def installment_plans(
        self, user_id: str, as_of: Optional[date] = None
    ) -> List[InstallmentPlan]:
        plans = self.source.fetch_installment_transactions(user_id)
        return compute_installment_plans(plans, as_of or date.today())
