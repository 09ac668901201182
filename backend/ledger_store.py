from __future__ import annotations

from typing import Iterable, List, Mapping

from sqlalchemy import and_, false, or_, select, true
from sqlalchemy.engine import Engine

from backend.database import transactions
from backend.ledger_records import (
    InstallmentPlanRecord,
    LedgerTransaction,
    normalize_plan_row,
    normalize_transaction,
)
from backend.schedule_math import month_bounds


class SqlTransactionStore:
    """Transaction reads backing the monthly view and installment plans."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def fetch_candidate_transactions(
        self, user_id: str, year: int, month: int
    ) -> List[LedgerTransaction]:
        start_date, end_date = month_bounds(year, month)
        stmt = (
            select(transactions)
            .where(
                transactions.c.user_id == user_id,
                or_(
                    and_(
                        transactions.c.is_installment == false(),
                        transactions.c.is_recurrent == false(),
                        transactions.c.transaction_date >= start_date,
                        transactions.c.transaction_date <= end_date,
                    ),
                    and_(
                        transactions.c.is_recurrent == true(),
                        transactions.c.recurrence_start_date.isnot(None),
                        transactions.c.recurrence_start_date <= end_date,
                    ),
                    transactions.c.is_installment == true(),
                ),
            )
            .order_by(transactions.c.transaction_date.asc(), transactions.c.id.asc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return _normalize_rows(rows)

    def fetch_installment_transactions(self, user_id: str) -> List[InstallmentPlanRecord]:
        stmt = (
            select(transactions)
            .where(
                transactions.c.user_id == user_id,
                transactions.c.total_installments > 1,
            )
            .order_by(transactions.c.transaction_date.asc(), transactions.c.id.asc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return _normalize_rows(rows, normalize_plan_row)


def _normalize_rows(rows: Iterable[Mapping], normalize=normalize_transaction) -> List:
    normalized: List = []
    for row in rows:
        txn = normalize(row)
        if txn is not None:
            normalized.append(txn)
    return normalized
