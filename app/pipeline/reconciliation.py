"""
AI response parsing and P&L reconciliation.

The model's text is untrusted. It is parsed as JSON when possible, its
transaction list is re-summed, and the re-summed totals win over the
model's self-reported P&L whenever they are non-zero. Net income is always
computed here. When nothing parses, a low-confidence result is built from
currency amounts found in the text so processing never hard-fails on
model output.

Everything in this module is pure: no I/O, no clock unless passed in.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional

import structlog

from app.models.enums import PLSource, TxType
from app.observability.metrics import analysis_parse_total
from app.pipeline.amount_parser import find_currency_amounts, to_decimal
from app.schemas.analysis import (
    AnalysisResult,
    AnalysisSummary,
    AnalysisTransaction,
    PLStatement,
)

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
RAW_RESPONSE_LIMIT = 1000

DEFAULT_REVENUE_CATEGORY = "Other Income"
DEFAULT_EXPENSE_CATEGORY = "Other Expenses"

_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_CREDIT_WORDS = {"credit", "cr", "income", "deposit", "revenue"}
_DEBIT_WORDS = {"debit", "dr", "expense", "withdrawal", "payment"}


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ─── JSON extraction ─────────────────────────────────────────

def extract_json_object(text: str) -> Optional[str]:
    """
    The first balanced top-level {...} in the text, ignoring braces inside
    strings. A truncated object falls back to first '{' through last '}'.
    """
    if not text:
        return None
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    end = text.rfind("}")
    return text[start:end + 1] if end > start else None


def repair_json(candidate: str) -> str:
    """Strip trailing commas before a closing bracket or brace."""
    return _TRAILING_COMMA_RE.sub(r"\1", candidate)


@dataclass
class ParsedResponse:
    data: Optional[dict]
    mode: str  # json | repaired | failed
    error: Optional[str] = None


def parse_model_response(text: str) -> ParsedResponse:
    """Locate and parse the JSON payload, retrying once after repair."""
    candidate = extract_json_object(text)
    if candidate is None:
        return ParsedResponse(None, "failed", "No JSON object found in AI response")

    try:
        return ParsedResponse(json.loads(candidate), "json")
    except json.JSONDecodeError as e:
        first_error = str(e)

    try:
        data = json.loads(repair_json(candidate))
    except json.JSONDecodeError as e:
        logger.warning("analysis_json_unrepairable", first_error=first_error, error=str(e))
        return ParsedResponse(None, "failed", f"Invalid JSON in AI response: {e}")

    logger.info("analysis_json_repaired", first_error=first_error)
    return ParsedResponse(data, "repaired")


# ─── Transactions and P&L ────────────────────────────────────

@dataclass
class NormalizedTransaction:
    date: Optional[str]
    description: str
    amount: Decimal  # always >= 0
    type: str
    category: str


@dataclass
class ReconciledPL:
    total_revenue: Decimal
    total_expenses: Decimal
    categories: dict[str, Decimal] = field(default_factory=dict)
    source: str = PLSource.MODEL.value

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses

    def to_schema(self) -> PLStatement:
        revenue = _cents(self.total_revenue)
        expenses = _cents(self.total_expenses)
        return PLStatement(
            total_revenue=float(revenue),
            total_expenses=float(expenses),
            net_income=float(revenue - expenses),
            categories={name: float(_cents(v)) for name, v in self.categories.items()},
        )


def _classify(raw_type: Any, amount: Decimal) -> str:
    """credit/debit from the declared type, else from the amount's sign."""
    if isinstance(raw_type, str):
        lowered = raw_type.strip().lower()
        if lowered in _CREDIT_WORDS:
            return TxType.CREDIT.value
        if lowered in _DEBIT_WORDS:
            return TxType.DEBIT.value
    return TxType.DEBIT.value if amount < 0 else TxType.CREDIT.value


def normalize_transactions(raw: Any) -> list[NormalizedTransaction]:
    """Keep entries with a usable amount; amounts become absolute values."""
    if not isinstance(raw, list):
        return []

    normalized = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        amount = to_decimal(item.get("amount"))
        if amount is None:
            continue
        tx_type = _classify(item.get("type"), amount)
        category = item.get("category")
        if not isinstance(category, str) or not category.strip():
            category = (DEFAULT_REVENUE_CATEGORY if tx_type == TxType.CREDIT.value
                        else DEFAULT_EXPENSE_CATEGORY)
        date = item.get("date")
        normalized.append(NormalizedTransaction(
            date=str(date) if date is not None else None,
            description=str(item.get("description") or ""),
            amount=abs(amount),
            type=tx_type,
            category=category.strip(),
        ))
    return normalized


def recompute_pl(transactions: Iterable[NormalizedTransaction]) -> ReconciledPL:
    """Sum credits into revenue and debits into expenses, per category."""
    revenue = ZERO
    expenses = ZERO
    categories: dict[str, Decimal] = {}
    for tx in transactions:
        if tx.type == TxType.CREDIT.value:
            revenue += tx.amount
        else:
            expenses += tx.amount
        categories[tx.category] = categories.get(tx.category, ZERO) + tx.amount
    return ReconciledPL(revenue, expenses, categories, PLSource.TRANSACTIONS.value)


def model_reported_pl(raw_pl: Any) -> ReconciledPL:
    """The model's own totals, coerced; missing or junk values count as zero."""
    if not isinstance(raw_pl, dict):
        return ReconciledPL(ZERO, ZERO, {}, PLSource.MODEL.value)

    categories = {}
    raw_categories = raw_pl.get("categories")
    if isinstance(raw_categories, dict):
        for name, value in raw_categories.items():
            amount = to_decimal(value)
            if amount is not None:
                categories[str(name)] = amount

    return ReconciledPL(
        total_revenue=to_decimal(raw_pl.get("totalRevenue")) or ZERO,
        total_expenses=to_decimal(raw_pl.get("totalExpenses")) or ZERO,
        categories=categories,
        source=PLSource.MODEL.value,
    )


def reconcile_pl(model_pl: Any, transactions: Any) -> ReconciledPL:
    """
    Prefer totals re-summed from the transaction list whenever the list is
    non-empty and the re-summed revenue + expenses is non-zero; otherwise
    fall back to the model's reported totals. Net income is derived.
    """
    reported = model_reported_pl(model_pl)
    if isinstance(transactions, list) and all(
        isinstance(t, NormalizedTransaction) for t in transactions
    ):
        normalized = transactions
    else:
        normalized = normalize_transactions(transactions)
    if normalized:
        recomputed = recompute_pl(normalized)
        if recomputed.total_revenue + recomputed.total_expenses != ZERO:
            return recomputed
    return reported


# ─── Analysis result assembly ────────────────────────────────

def scan_currency_amounts(text: str) -> list[Decimal]:
    """Absolute values of every currency-like amount in free text."""
    return [abs(found.amount) for found in find_currency_amounts(text)]


def degraded_analysis(
    text: str,
    document_type: str,
    reason: str,
    extracted_at: Optional[datetime] = None,
) -> AnalysisResult:
    """
    Low-confidence result from currency amounts found in unparseable text.
    The summed absolute amount is split evenly between revenue and expenses.
    """
    amounts = scan_currency_amounts(text)
    total = sum(amounts, ZERO)
    revenue = _cents(total / 2)
    expenses = _cents(total) - revenue
    pl = ReconciledPL(revenue, expenses, {}, PLSource.DEGRADED.value)

    analysis_parse_total.labels(mode="degraded").inc()
    logger.warning("analysis_degraded", reason=reason, amounts_found=len(amounts),
                   total=str(total))

    return AnalysisResult(
        document_type=document_type,
        transactions=[],
        summary=AnalysisSummary(
            total_debits=float(expenses),
            total_credits=float(revenue),
            transaction_count=0,
        ),
        pl_statement=pl.to_schema(),
        insights=[
            "AI response parsing failed; totals are estimated from "
            f"{len(amounts)} currency amounts found in the response text.",
            "Low confidence: revenue and expenses are an even split of the "
            "amounts found, not a classification of real transactions.",
        ],
        extracted_at=extracted_at or datetime.now(timezone.utc),
        pl_source=PLSource.DEGRADED.value,
        confidence="low",
        parse_error=reason,
        raw_response=text[:RAW_RESPONSE_LIMIT] if text else None,
    )


def _summary(data: dict, transactions: list[NormalizedTransaction]) -> AnalysisSummary:
    if transactions:
        debits = sum((t.amount for t in transactions if t.type == TxType.DEBIT.value), ZERO)
        credits = sum((t.amount for t in transactions if t.type == TxType.CREDIT.value), ZERO)
        return AnalysisSummary(
            total_debits=float(_cents(debits)),
            total_credits=float(_cents(credits)),
            transaction_count=len(transactions),
        )
    raw = data.get("summary") if isinstance(data.get("summary"), dict) else {}
    count = raw.get("transactionCount")
    return AnalysisSummary(
        total_debits=float(_cents(to_decimal(raw.get("totalDebits")) or ZERO)),
        total_credits=float(_cents(to_decimal(raw.get("totalCredits")) or ZERO)),
        transaction_count=count if isinstance(count, int) and count >= 0 else 0,
    )


def _insights(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list):
        return [str(item) for item in raw if item is not None]
    return []


def build_analysis(
    text: str,
    document_type: str,
    extracted_at: Optional[datetime] = None,
) -> AnalysisResult:
    """Turn a raw model response into a reconciled AnalysisResult."""
    parsed = parse_model_response(text)
    if parsed.data is None or not isinstance(parsed.data, dict):
        return degraded_analysis(text, document_type, parsed.error or "Unparseable AI response",
                                 extracted_at=extracted_at)

    data = parsed.data
    transactions = normalize_transactions(data.get("transactions"))
    reported = model_reported_pl(data.get("plStatement"))
    pl = reconcile_pl(data.get("plStatement"), transactions)
    insights = _insights(data.get("insights"))

    if pl.source == PLSource.TRANSACTIONS.value and (
        _cents(pl.total_revenue) != _cents(reported.total_revenue)
        or _cents(pl.total_expenses) != _cents(reported.total_expenses)
    ):
        logger.info("analysis_totals_recomputed",
                    reported_revenue=str(reported.total_revenue),
                    reported_expenses=str(reported.total_expenses),
                    revenue=str(pl.total_revenue), expenses=str(pl.total_expenses))
        insights.append(
            f"Totals recomputed from {len(transactions)} transactions; the AI reported "
            f"revenue {_cents(reported.total_revenue)} and expenses "
            f"{_cents(reported.total_expenses)}."
        )

    analysis_parse_total.labels(mode=parsed.mode).inc()
    doc_type = data.get("documentType")

    return AnalysisResult(
        document_type=doc_type if isinstance(doc_type, str) and doc_type else document_type,
        transactions=[
            AnalysisTransaction(
                date=t.date,
                description=t.description,
                amount=float(_cents(t.amount)),
                type=t.type,
                category=t.category,
            )
            for t in transactions
        ],
        summary=_summary(data, transactions),
        pl_statement=pl.to_schema(),
        insights=insights,
        extracted_at=extracted_at or datetime.now(timezone.utc),
        pl_source=pl.source,
    )


def aggregate_pl_statements(statements: Iterable[dict]) -> PLStatement:
    """Combine persisted plStatement dicts (camelCase) into one total."""
    revenue = ZERO
    expenses = ZERO
    categories: dict[str, Decimal] = {}
    for raw in statements:
        pl = model_reported_pl(raw)
        revenue += pl.total_revenue
        expenses += pl.total_expenses
        for name, amount in pl.categories.items():
            categories[name] = categories.get(name, ZERO) + amount
    return ReconciledPL(revenue, expenses, categories).to_schema()
