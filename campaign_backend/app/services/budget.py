from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from campaign_backend.app.models import (
    BudgetCategory,
    BudgetLedgerDocument,
    BudgetSummary,
    CategoryTotals,
    Currency,
    ExpenseDraft,
    ExpenseEntry,
    utc_now,
)
from campaign_backend.app.services.pacing import round_half_up
from campaign_backend.app.store import new_id

# Legacy "ads" lines predate the lead/regular split and count as regular.
REGULAR_TARGET_CATEGORIES = (BudgetCategory.ads, BudgetCategory.ads_regular)
LEAD_TARGET_CATEGORIES = (BudgetCategory.ads_lead,)


class InvalidExpenseError(ValueError):
    pass


def to_usd(amount: float, currency: Currency, rate: float) -> float:
    if currency == Currency.usd:
        return amount
    return amount / rate


def summarize(ledger: BudgetLedgerDocument, rate: float) -> BudgetSummary:
    by_category = {category.value: CategoryTotals() for category in BudgetCategory}
    total_spent = 0.0
    for expense in ledger.expenses:
        totals = by_category[expense.category_id.value]
        totals.count += 1
        if expense.currency == Currency.usd:
            totals.total_usd += expense.amount
        else:
            totals.total_uzs += expense.amount
        total_spent += to_usd(expense.amount, expense.currency, rate)
    return BudgetSummary(
        total_budget=ledger.total_budget,
        total_spent=total_spent,
        remaining=ledger.total_budget - total_spent,
        by_category=by_category,
        exchange_rate=rate,
    )


def split_amount(amount: float, start: date, end: date) -> list[tuple[date, float]]:
    if end < start:
        raise InvalidExpenseError(f"date range ends before it starts: {start} - {end}")
    days = (end - start).days + 1
    if days == 1:
        return [(start, amount)]
    per_day = round_half_up(amount / days)
    lines = [(start + timedelta(days=offset), float(per_day)) for offset in range(days - 1)]
    lines.append((end, amount - per_day * (days - 1)))
    return lines


def add_expense(
    ledger: BudgetLedgerDocument,
    draft: ExpenseDraft,
    *,
    now: Optional[datetime] = None,
) -> BudgetLedgerDocument:
    created_at = now or utc_now()
    start = draft.date or created_at.date()
    end = draft.date_to or start
    description = draft.description.strip()
    lines = split_amount(draft.amount, start, end)
    if len(lines) > 1:
        description = f"{description} ({start.isoformat()} - {end.isoformat()})".strip()

    new_entries = [
        ExpenseEntry(
            id=new_id("exp"),
            category_id=draft.category_id,
            amount=amount,
            currency=draft.currency,
            description=description,
            date=line_date,
            created_at=created_at,
        )
        for line_date, amount in lines
    ]
    return ledger.model_copy(
        update={"expenses": [*ledger.expenses, *new_entries], "updated_at": created_at}
    )


def remove_expense(
    ledger: BudgetLedgerDocument, expense_id: str
) -> tuple[BudgetLedgerDocument, bool]:
    kept = [expense for expense in ledger.expenses if expense.id != expense_id]
    removed = len(kept) != len(ledger.expenses)
    return ledger.model_copy(update={"expenses": kept, "updated_at": utc_now()}), removed


def set_total_budget(ledger: BudgetLedgerDocument, total_budget: float) -> BudgetLedgerDocument:
    return ledger.model_copy(update={"total_budget": total_budget, "updated_at": utc_now()})


def category_spend_usd(
    ledger: BudgetLedgerDocument,
    categories: Iterable[BudgetCategory],
    rate: float,
) -> float:
    wanted = set(categories)
    return sum(
        to_usd(expense.amount, expense.currency, rate)
        for expense in ledger.expenses
        if expense.category_id in wanted
    )


def per_unit_cost(spend: float, count: int) -> Optional[float]:
    if count <= 0:
        return None
    return spend / count


def empty_ledger(total_budget_usd: float) -> BudgetLedgerDocument:
    return BudgetLedgerDocument(total_budget=total_budget_usd, updated_at=utc_now())
