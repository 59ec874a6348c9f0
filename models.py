"""
models.py - Data Models for the exam office reconciliation engine

This file defines the data structures shared across the engine. Modules
communicate through these models:

    woo_client.py    ->  OrderDetail, OrderSummary
    fields.py        ->  CanonicalParticipant
    bank_match.py    ->  ParsedTransaction, BankTransaction, TransactionMatchCandidate
    reconcile.py     ->  ReconciledOrderRow, ScanResult
    sheet_tabs.py    ->  SheetTab, TabResolution
    duplicates.py    ->  DuplicateVerdict
    office_store.py  ->  OfficeState (persists exams, orders, bank data)

Design principles:
1. Order data arrives from WooCommerce in loosely typed JSON. The order
   models accept anything and coerce; they never reject an order because
   a field is missing or oddly typed.
2. Derived records (participant, reconciled row) are read-only projections
   recomputed per fetch; they are never persisted.
3. Match candidates carry their reason string so every suggestion shown to
   staff can be explained.

Schema relationships:
    OrderDetail      --projected by--> CanonicalParticipant, ReconciledOrderRow
    OrderSummary     --matched by--> TransactionMatchCandidate.order_id
    BankStatement    --owns--> BankTransaction.statement_id
    BankTransaction  --scored into--> TransactionMatchCandidate.transaction_id
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class Billing(BaseModel):
    """Billing block of a WooCommerce order."""

    model_config = ConfigDict(extra="ignore")

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    country: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    postcode: str = ""
    # Birthday plugins write the date of birth into the billing block
    # under several names.
    dob: str = ""
    birth_date: str = ""
    birthdate: str = ""
    date_of_birth: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name.strip(), self.last_name.strip()) if part)

    @property
    def any_dob(self) -> str:
        for value in (self.dob, self.birth_date, self.birthdate, self.date_of_birth):
            if value.strip():
                return value.strip()
        return ""


class LineItem(BaseModel):
    """One purchased product of an order. Exam products carry the booking form metadata."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    sku: str = ""
    description: str = ""
    meta_data: list[Any] = Field(default_factory=list)

    @field_validator("name", "sku", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("meta_data", mode="before")
    @classmethod
    def _coerce_meta(cls, value: Any) -> list[Any]:
        return list(value) if isinstance(value, (list, tuple)) else []


class OrderDetail(BaseModel):
    """Full order as returned by `GET /wp-json/wc/v3/orders/{id}`.

    `meta_data` entries stay raw mappings: the booking form plugins in use
    write keys under `key`, `name` or `display_key` and values as strings,
    numbers, lists or `{label, value}` objects. The metadata normalizer is
    the one place that interprets them.
    """

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., description="WooCommerce post id of the order.")
    number: str = Field(
        default="",
        description=(
            "Customer-facing order number. Sequential-number plugins make it "
            "differ from `id`; falls back to `str(id)` when absent."
        ),
    )
    status: str = ""
    total: str = Field(default="", description="Order total as WooCommerce sends it, e.g. '179.00'.")
    currency: str = ""
    date_created: str = ""
    billing: Billing = Field(default_factory=Billing)
    payment_method: str = ""
    payment_method_title: str = ""
    meta_data: list[Any] = Field(default_factory=list)
    line_items: list[LineItem] = Field(default_factory=list)

    @field_validator(
        "number",
        "status",
        "total",
        "currency",
        "date_created",
        "payment_method",
        "payment_method_title",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("billing", mode="before")
    @classmethod
    def _coerce_billing(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, Billing)) else {}

    @field_validator("meta_data", "line_items", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[Any]:
        if not isinstance(value, (list, tuple)):
            return []
        return [item for item in value if item is not None]

    @model_validator(mode="after")
    def _default_number(self) -> "OrderDetail":
        if not self.number.strip():
            self.number = str(self.id)
        return self

    @property
    def payment_label(self) -> str:
        return self.payment_method_title or self.payment_method


class OrderSummary(BaseModel):
    """Compact order record kept locally as the bank matcher's order window."""

    model_config = ConfigDict(extra="ignore")

    id: int
    number: str = ""
    status: str = ""
    total: str = ""
    currency: str = ""
    created_at: str = ""
    customer_name: str = ""
    email: str = ""
    phone: str = ""
    payment_method: str = ""
    link: str = ""

    @field_validator(
        "number",
        "status",
        "total",
        "currency",
        "created_at",
        "customer_name",
        "email",
        "phone",
        "payment_method",
        "link",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class CanonicalParticipant(BaseModel):
    """Unified exam-registrant record derived from one order.

    Computed on demand from the order's normalized metadata (preferred when
    an alias is found) and its billing block (fallback). Empty strings mean
    "not found"; the projection never fails on missing data.
    """

    order_number: str = ""
    last_name: str = ""
    first_name: str = ""
    dob: str = Field(default="", description="Date of birth as DD.MM.YYYY when parseable, raw text otherwise.")
    birth_place: str = ""
    birth_country: str = Field(default="", description="ISO3 code when recognizable, raw text otherwise.")
    nationality: str = Field(default="", description="ISO3 code when recognizable, raw text otherwise.")
    email: str = ""
    phone: str = ""
    exam_kind: str = ""
    exam_part: str = Field(default="Gesamt", description="'nur mündlich', 'nur schriftlich' or 'Gesamt'.")
    exam_date: str = ""
    certificate_delivery: str = ""
    price: str = ""
    price_eur: str = ""
    address_1: str = ""
    address_2: str = ""
    postcode: str = ""
    city: str = ""
    country: str = ""
    booking_date: str = ""
    payment_method: str = ""


class TransactionStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    IGNORED = "ignored"


class BankStatement(BaseModel):
    """One uploaded statement document."""

    id: int
    filename: str = ""
    uploaded_at: str = ""


class ParsedTransaction(BaseModel):
    """A transaction block cut from statement text, before it is stored."""

    date: Optional[str] = None
    sender_name: Optional[str] = None
    amount: Optional[float] = None
    reference: str = ""


class BankTransaction(BaseModel):
    """Transaction parsed from one date-delimited block of a statement.

    Date and amount stay None when they cannot be parsed; the block is kept
    anyway because the reference text alone can still identify the order.
    """

    id: int
    statement_id: int
    date: Optional[str] = None
    sender_name: Optional[str] = None
    amount: Optional[float] = None
    reference: str = ""
    status: TransactionStatus = TransactionStatus.PENDING


class TransactionMatchCandidate(BaseModel):
    """A suggested link between a bank transaction and an order.

    Confidence tiers (1 = best):
        1 - order number found in the reference AND amount matches (+/-0.005)
        2 - order number in the reference without amount match,
            or a name match with amount match
        3 - name match alone

    Candidates are suggestions only. Accepting one is a staff decision.
    """

    transaction_id: int
    order_id: int
    confidence: Literal[1, 2, 3]
    reason: str
    name_score: Optional[float] = Field(default=None, ge=0, le=1)
    amount_match: bool = False
    order_number_in_reference: bool = False
    reference_names: Optional[str] = Field(
        default=None,
        description="Comma-joined names found in the reference text, for display next to the candidate.",
    )


class ExamDefinition(BaseModel):
    """A scheduled exam: the target of order reconciliation."""

    id: int
    kind: str = Field(..., min_length=1, description="'B1', 'B2', 'C1' or any custom kind.")
    date: str = Field(..., min_length=1, description="ISO or German date text as entered.")


class SheetTab(BaseModel):
    """One tab of a spreadsheet, as listed by the Sheets API."""

    title: str
    gid: str = ""
    index: int = 0


class TabResolution(BaseModel):
    """Outcome of mapping a month/year to a spreadsheet tab. `title` is None when unresolved."""

    title: Optional[str] = None
    method: Optional[Literal["numeric", "year_position", "position", "text"]] = None

    @property
    def resolved(self) -> bool:
        return self.title is not None


class ReconciledOrderRow(BaseModel):
    """An order projected onto the fields used to match it against an exam."""

    order_id: int
    order_number: str = ""
    last_name: str = ""
    first_name: str = ""
    exam_type: str = ""
    exam_date: str = ""
    certificate: str = ""


class ScanStatus(str, Enum):
    COMPLETED = "completed"
    EARLY_STOP = "early_stop"
    STOPPED = "stopped"


class ScanResult(BaseModel):
    """Outcome of an incremental ID scan.

    `examined` counts IDs taken off the shared cursor. On STOPPED (the scan
    was cancelled) `matches` is always empty.
    """

    status: ScanStatus
    matches: list[ReconciledOrderRow] = Field(default_factory=list)
    examined: int = 0
    errors: int = 0


class DuplicateVerdict(BaseModel):
    """Result of checking whether a 4-digit order code already sits in a spreadsheet."""

    status: Literal["unique", "duplicate", "no-col", "error"]
    code: str
    tab: Optional[str] = None
    column: Optional[str] = None
    row: Optional[int] = Field(default=None, description="1-based sheet row of the first occurrence.")
    message: Optional[str] = None
