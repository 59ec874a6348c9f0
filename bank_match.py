"""
bank_match.py - Bank statement parsing and transaction-to-order matching.

A statement arrives as extracted text. It is cut into date-delimited
transaction blocks, and every block is scored against a window of recent
orders using two signals:
- order numbers written into the reference text
- fuzzy similarity between names in the reference and the order's customer

Every hit becomes a `TransactionMatchCandidate` with a confidence tier and a
reason string. Candidates are suggestions; staff accept or ignore them.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import pandas as pd

from logging_config import get_logger
from models import (
    BankTransaction,
    OrderSummary,
    ParsedTransaction,
    TransactionMatchCandidate,
    TransactionStatus,
)
from normalize import normalize_text, parse_amount

logger = get_logger(__name__)

DATE_TOKEN = re.compile(r"\b(\d{1,2}[./-]\d{1,2}[./-]\d{2,4})\b")
NAME_RUN = re.compile(
    r"[A-ZÄÖÜ][A-Za-zÄÖÜäöüß'`-]+(?:[ \t]+[A-ZÄÖÜ][A-Za-zÄÖÜäöüß'`-]+){0,3}"
)
NAME_PAIR = re.compile(r"(?=\b([A-ZÄÖÜ][A-Za-zÄÖÜäöüß'`-]+[ \t]+[A-ZÄÖÜ][A-Za-zÄÖÜäöüß'`-]+)\b)")
# Digit runs that are the integer part of an amount ("2179,00") are not references.
REF_NUMBER = re.compile(r"(?<!\d)#?(\d{4,8})(?!\d|[.,]\d{2}(?!\d))")

AMOUNT_TOLERANCE = 0.005
DEFAULT_NAME_THRESHOLD = 0.85
ORDER_NUMBER_REASON = "Order # in reference"

ORDER_COLUMNS = ["id", "number", "total", "customer_name", "created_at"]


def _without_dates(text: str) -> str:
    return DATE_TOKEN.sub(" ", text)


def _parse_block(date: Optional[str], tokens: list[str]) -> ParsedTransaction:
    reference = "\n".join(token for token in tokens if token)
    body = _without_dates(reference)
    sender_match = NAME_RUN.search(body)
    return ParsedTransaction(
        date=date,
        sender_name=sender_match.group(0).strip() if sender_match else None,
        amount=parse_amount(body),
        reference=reference,
    )


def split_transactions(text: Optional[str]) -> list[ParsedTransaction]:
    """Cut statement text into transactions, one per date token.

    Each date opens a block that runs until the next date; the block text,
    date included, is kept verbatim as the reference. Text before the first
    date is ignored. Text without any date becomes one transaction
    with `date=None` and the whole text as its reference.
    """
    raw = text or ""
    dates = list(DATE_TOKEN.finditer(raw))

    if not dates:
        logger.debug("statement_split | date_tokens=0 | fallback='single transaction'")
        return [_parse_block(None, [line.strip() for line in raw.splitlines()])]

    transactions: list[ParsedTransaction] = []
    for index, match in enumerate(dates):
        end = dates[index + 1].start() if index + 1 < len(dates) else len(raw)
        block = raw[match.start():end]
        tokens = [line.strip() for line in block.splitlines()]
        transactions.append(_parse_block(match.group(1), tokens))

    logger.debug("statement_split | date_tokens=%s | transactions=%s", len(dates), len(transactions))
    return transactions


def _tokens(text: Any) -> set[str]:
    return {token for token in normalize_text(text).split(" ") if token}


def token_set_similarity(a: Any, b: Any) -> float:
    """Dice coefficient over normalized name tokens, in [0, 1].

    "Hans Müller" and "Hans Mueller" fold to the same tokens and score 1.0.
    """
    left = _tokens(a)
    right = _tokens(b)
    if not left or not right:
        return 0.0
    shared = len(left & right)
    return 2.0 * shared / (len(left) + len(right))


def reference_numbers(text: Optional[str]) -> list[str]:
    """Distinct 4-8 digit numbers in `text`, in order of appearance. Dates are skipped."""
    found: list[str] = []
    for match in REF_NUMBER.finditer(_without_dates(text or "")):
        number = match.group(1)
        if number not in found:
            found.append(number)
    return found


def reference_names(tx: ParsedTransaction | BankTransaction) -> list[str]:
    """Sender name plus every two-word capitalized sequence in the reference."""
    names: list[str] = []
    if tx.sender_name:
        names.append(tx.sender_name)
    for match in NAME_PAIR.finditer(_without_dates(tx.reference or "")):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def _order_total(total: str) -> Optional[float]:
    raw = (total or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return parse_amount(raw)


def orders_frame(orders: list[OrderSummary]) -> pd.DataFrame:
    """Order window as a DataFrame with the columns the matcher reads."""
    rows = [
        {
            "id": order.id,
            "number": order.number or str(order.id),
            "total": _order_total(order.total),
            "customer_name": order.customer_name,
            "created_at": order.created_at,
        }
        for order in orders
    ]
    return pd.DataFrame(rows, columns=ORDER_COLUMNS)


def _total_of(row: pd.Series) -> Optional[float]:
    value = row["total"]
    if value is None or pd.isna(value):
        return None
    if isinstance(value, str):
        return parse_amount(value)
    return float(value)


def _amount_match(amount: Optional[float], total: Optional[float]) -> bool:
    if amount is None or total is None:
        return False
    return abs(amount - total) < AMOUNT_TOLERANCE


def match_transaction(
    tx: ParsedTransaction | BankTransaction,
    orders_df: pd.DataFrame,
    name_threshold: float = DEFAULT_NAME_THRESHOLD,
    transaction_id: int = 0,
) -> list[TransactionMatchCandidate]:
    """Score one transaction against an order window.

    Reference-number pass: an order whose number contains a number from the
    reference scores 1 with amount agreement, else 2.
    Name pass: orders not already hit by number are compared by name;
    similarity at or above `name_threshold` scores 2 with amount agreement,
    else 3.
    """
    if orders_df is None or not isinstance(orders_df, pd.DataFrame):
        logger.error(
            "bank_match_input_error | expected_type=DataFrame | got_type=%s | fallback=[]",
            type(orders_df).__name__,
        )
        return []

    if orders_df.empty:
        logger.warning("bank_match_input_warning | orders_empty=True | fallback=[]")
        return []

    missing_cols = [col for col in ORDER_COLUMNS if col not in orders_df.columns]
    if missing_cols:
        logger.error(
            "bank_match_input_error | missing_columns=%s | available_columns=%s | fallback=[]",
            missing_cols,
            list(orders_df.columns),
        )
        return []

    tx_id = getattr(tx, "id", transaction_id)
    names = reference_names(tx)
    names_display = ", ".join(names) or None
    candidates: list[TransactionMatchCandidate] = []
    number_hits: set[int] = set()

    numbers = reference_numbers(tx.reference)
    order_numbers = orders_df["number"].astype(str)
    for number in numbers:
        hits = orders_df[order_numbers.str.contains(number, regex=False)]
        for _, row in hits.iterrows():
            order_id = int(row["id"])
            if order_id in number_hits:
                continue
            number_hits.add(order_id)
            amount_match = _amount_match(tx.amount, _total_of(row))
            candidates.append(
                TransactionMatchCandidate(
                    transaction_id=tx_id,
                    order_id=order_id,
                    confidence=1 if amount_match else 2,
                    reason=ORDER_NUMBER_REASON,
                    amount_match=amount_match,
                    order_number_in_reference=True,
                    reference_names=names_display,
                )
            )

    seen_pairs: set[tuple[int, str]] = set()
    for _, row in orders_df.iterrows():
        order_id = int(row["id"])
        if order_id in number_hits:
            continue
        customer = str(row["customer_name"] or "")
        if not customer.strip():
            continue
        for name in names:
            pair = (order_id, normalize_text(name))
            if pair in seen_pairs:
                continue
            seen_pairs.add(pair)

            score = token_set_similarity(name, customer)
            if score < name_threshold:
                continue
            amount_match = _amount_match(tx.amount, _total_of(row))
            candidates.append(
                TransactionMatchCandidate(
                    transaction_id=tx_id,
                    order_id=order_id,
                    confidence=2 if amount_match else 3,
                    reason=f"Name match {score:.2f}",
                    name_score=round(score, 4),
                    amount_match=amount_match,
                    order_number_in_reference=False,
                    reference_names=names_display,
                )
            )

    logger.debug(
        "bank_match | transaction=%s | numbers=%s | names=%s | candidates=%s",
        tx_id,
        numbers,
        names,
        len(candidates),
    )
    return candidates


def ingest_statement(
    store: Any,
    text: str,
    filename: str,
    window: int = 150,
    name_threshold: float = DEFAULT_NAME_THRESHOLD,
) -> dict[str, int]:
    """Parse a statement, match it against the latest orders and persist everything.

    `store` is an `office_store.OfficeStore`. Returns counts for display.
    """
    parsed = split_transactions(text)
    matched = 0
    candidate_count = 0

    with store.update() as state:
        statement = state.add_statement(filename)
        orders_df = orders_frame(state.recent_orders(window))

        if orders_df.empty:
            logger.warning(
                "bank_ingest_warning | statement=%s | orders_in_window=0 | fallback='store without candidates'",
                statement.id,
            )

        for item in parsed:
            transaction = BankTransaction(
                id=state.next_transaction_id(),
                statement_id=statement.id,
                date=item.date,
                sender_name=item.sender_name,
                amount=item.amount,
                reference=item.reference,
            )
            state.transactions.append(transaction)
            if orders_df.empty:
                continue
            found = match_transaction(transaction, orders_df, name_threshold=name_threshold)
            state.candidates.extend(found)
            candidate_count += len(found)
            if found:
                matched += 1

    logger.info(
        "bank_ingest | statement=%s | filename=%r | transactions=%s | with_candidates=%s | candidates=%s",
        statement.id,
        filename,
        len(parsed),
        matched,
        candidate_count,
    )
    return {
        "statement_id": statement.id,
        "transactions": len(parsed),
        "transactions_with_candidates": matched,
        "candidates": candidate_count,
    }


def matches_joined(state: Any) -> list[dict[str, Any]]:
    """Candidates joined with their transaction and order.

    Ordered by confidence (best first), then order creation time, newest first.
    """
    transactions = {tx.id: tx for tx in state.transactions}
    orders = {order.id: order for order in state.orders}

    rows: list[dict[str, Any]] = []
    for candidate in state.candidates:
        tx = transactions.get(candidate.transaction_id)
        if tx is None:
            continue
        order = orders.get(candidate.order_id)
        rows.append(
            {
                "candidate": candidate.model_dump(mode="json"),
                "transaction": tx.model_dump(mode="json"),
                "order": order.model_dump(mode="json") if order else None,
            }
        )

    def created(row: dict[str, Any]) -> str:
        return (row["order"] or {}).get("created_at", "")

    rows.sort(key=created, reverse=True)
    rows.sort(key=lambda row: row["candidate"]["confidence"])
    return rows


def unmatched_transactions(state: Any) -> list[BankTransaction]:
    """Pending transactions that produced no candidate."""
    with_candidates = {candidate.transaction_id for candidate in state.candidates}
    return [
        tx
        for tx in state.transactions
        if tx.id not in with_candidates and tx.status == TransactionStatus.PENDING
    ]


def set_transaction_status(store: Any, transaction_id: int, status: TransactionStatus | str) -> BankTransaction:
    """Mark a transaction matched, ignored or pending again. Raises KeyError when unknown."""
    with store.update() as state:
        transaction = state.transaction_by_id(transaction_id)
        if transaction is None:
            raise KeyError(f"Unknown transaction id: {transaction_id}")
        transaction.status = TransactionStatus(status)
    logger.info("bank_transaction_status | id=%s | status=%s", transaction_id, transaction.status.value)
    return transaction
