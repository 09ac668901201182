from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Union

from backend.schedule_math import parse_iso_date

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = {"revenue", "expense"}


@dataclass(frozen=True)
class SingleTransaction:
    id: str
    description: str
    amount: float
    type: str
    date: date
    category_id: Optional[str] = None


@dataclass(frozen=True)
class InstallmentTransaction:
    id: str
    description: str
    amount: float
    type: str
    start_date: date
    total_installments: int
    paid_installments: int = 0
    category_id: Optional[str] = None


@dataclass(frozen=True)
class RecurringTransaction:
    id: str
    description: str
    amount: float
    type: str
    recurrence_start: date
    category_id: Optional[str] = None


LedgerTransaction = Union[SingleTransaction, InstallmentTransaction, RecurringTransaction]


@dataclass(frozen=True)
class InstallmentPlanRecord:
    id: str
    description: str
    amount: float
    type: str
    start_date: date
    total_installments: int
    paid_installments: int = 0
    category_id: Optional[str] = None


def parse_installments(value: Any) -> Optional[dict]:
    """Return the structured installments payload as a dict.

    Some stores hand it back already decoded, others as a JSON string.
    """
    if not value:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def encode_installments(
    total_installments: int, paid_installments: int, start_date: Optional[date]
) -> str:
    return json.dumps(
        {
            "totalInstallments": total_installments,
            "paidInstallments": paid_installments,
            "startDate": start_date.isoformat() if start_date else None,
        }
    )


def normalize_transaction(row: Mapping[str, Any]) -> Optional[LedgerTransaction]:
    """Turn a raw transaction row into one of the three ledger variants.

    Returns ``None`` when the row lacks the date its kind needs or carries an
    unreadable amount.
    """
    installments = parse_installments(row.get("installments"))
    total_installments = _resolve_total_installments(row, installments)
    is_installment = _is_truthy(row.get("is_installment")) or (
        installments is not None and _coerce_int(installments.get("totalInstallments")) > 1
    )

    common = _common_fields(row)
    if common is None:
        return None

    if is_installment and total_installments > 1:
        start_date = _first_date(
            row.get("start_date"),
            row.get("transaction_date"),
            installments.get("startDate") if installments else None,
        )
        if start_date is None:
            logger.debug("Skipping installment transaction %s without start date", common["id"])
            return None
        return InstallmentTransaction(
            start_date=start_date,
            total_installments=total_installments,
            paid_installments=_resolve_paid_installments(row, installments),
            **common,
        )

    if _is_truthy(row.get("is_recurrent")):
        recurrence_start = _first_date(
            row.get("recurrence_start_date"),
            installments.get("startDate") if installments else None,
        )
        if recurrence_start is None:
            logger.debug("Skipping recurring transaction %s without start date", common["id"])
            return None
        return RecurringTransaction(recurrence_start=recurrence_start, **common)

    occurred_on = _first_date(row.get("transaction_date"), row.get("date"))
    if occurred_on is None:
        logger.debug("Skipping transaction %s without a date", common["id"])
        return None
    return SingleTransaction(date=occurred_on, **common)


def normalize_plan_row(row: Mapping[str, Any]) -> Optional[InstallmentPlanRecord]:
    """Read a row fetched for the installment plan list.

    Plans trust the flat columns first: the total comes from
    ``total_installments`` and the start from ``transaction_date``, with the
    structured sub-object only as a fallback. The ``is_installment`` flag is
    not consulted.
    """
    installments = parse_installments(row.get("installments"))
    common = _common_fields(row)
    if common is None:
        return None
    start_date = _first_date(
        row.get("transaction_date"),
        row.get("start_date"),
        installments.get("startDate") if installments else None,
    )
    if start_date is None:
        logger.debug("Skipping installment plan %s without start date", common["id"])
        return None
    total_installments = _coerce_int(row.get("total_installments"))
    if not total_installments and installments:
        total_installments = _coerce_int(installments.get("totalInstallments"))
    return InstallmentPlanRecord(
        start_date=start_date,
        total_installments=total_installments or 1,
        paid_installments=_resolve_paid_installments(row, installments),
        **common,
    )


def _common_fields(row: Mapping[str, Any]) -> Optional[dict]:
    amount = _coerce_amount(row.get("amount"))
    if amount is None:
        logger.debug("Skipping transaction %s with unreadable amount %r", row["id"], row.get("amount"))
        return None
    return {
        "id": str(row["id"]),
        "description": row.get("description") or "",
        "amount": amount,
        "type": row.get("type"),
        "category_id": row.get("category_id"),
    }


def _resolve_total_installments(row: Mapping[str, Any], installments: Optional[dict]) -> int:
    if installments:
        from_payload = _coerce_int(installments.get("totalInstallments"))
        if from_payload:
            return from_payload
    return _coerce_int(row.get("total_installments")) or 1


def _resolve_paid_installments(row: Mapping[str, Any], installments: Optional[dict]) -> int:
    if installments and installments.get("paidInstallments") is not None:
        return _coerce_int(installments.get("paidInstallments"))
    installment_number = _coerce_int(row.get("installment_number"))
    return installment_number - 1 if installment_number > 0 else 0


def _first_date(*candidates: Any) -> Optional[date]:
    # First present value wins; a present but unreadable value does not fall through.
    for candidate in candidates:
        if candidate:
            return parse_iso_date(candidate)
    return None


def _is_truthy(value: Any) -> bool:
    return value is True or value == 1


def _coerce_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _coerce_amount(value: Any) -> Optional[float]:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
