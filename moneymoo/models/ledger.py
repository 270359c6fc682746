"""
Core Data Models for the Ledger Engine

These models define the strict schemas for all records the engine stores
and the shapes it returns to the presentation layer.

DESIGN DECISION: Amounts are Decimal everywhere. Locale-formatted strings
are converted at the boundary (see models.money) and never reach these
models as text.

Derived-but-stored quantities:
- Account.balance is kept equal to initial_balance plus the signed effect of
  every transaction and debt payment against the account.
- Debt.remaining_amount and Debt.status are recomputed from the debt's
  payments after every payment write.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Where the money sits."""
    CASH = "cash"
    BANK = "bank"
    E_WALLET = "e-wallet"
    INVESTMENT = "investment"
    OTHER = "other"


class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class DebtType(str, Enum):
    """
    Who owes whom.

    DEBT: the user owes the contact.
    RECEIVABLE: the contact owes the user.
    """
    DEBT = "debt"
    RECEIVABLE = "receivable"


class DebtStatus(str, Enum):
    """Payoff state. PAID iff remaining_amount <= 0."""
    ACTIVE = "active"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """How a debt payment was made."""
    CASH = "cash"
    TRANSFER = "transfer"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    OTHER = "other"


# =============================================================================
# VALIDATION
# =============================================================================

class FieldError(BaseModel):
    """A single field-level validation failure."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    code: str = Field(
        ...,
        description="Machine-readable rule that failed (e.g., 'required', 'min')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Account(BaseModel):
    """
    A place money is kept.

    `initial_balance` is fixed at creation; `balance` moves with every
    transaction and debt payment that names this account.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.CASH
    account_number: Optional[str] = Field(default=None, max_length=50)
    initial_balance: Decimal = Field(default=Decimal("0"))
    balance: Decimal = Field(default=Decimal("0"))
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Category(BaseModel):
    """
    A user-defined label for transactions.

    Transactions store the category name as free text, so deleting a
    category leaves existing transactions untouched.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Transaction(BaseModel):
    """
    One income or expense entry.

    `date` is the user-facing booking date and may differ from created_at.
    `account_id` is a weak reference: the account may be deleted later, in
    which case the transaction becomes unassigned.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    account_id: Optional[UUID] = None
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    amount: Decimal = Field(..., gt=0)
    date: date
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def signed_amount(self) -> Decimal:
        """+amount for income, -amount for expense."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount

    def identity_key(self) -> tuple:
        """The fields two transactions must share to count as duplicates."""
        return (
            self.owner_id,
            self.amount,
            self.description,
            self.category,
            self.date,
        )


class Debt(BaseModel):
    """
    A debt the user owes, or a receivable owed to the user.

    total_amount is fixed at creation. remaining_amount and status are
    derived from the payments recorded against the debt.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    type: DebtType
    contact_name: str = Field(..., min_length=1, max_length=200)
    contact_phone: Optional[str] = Field(default=None, max_length=50)
    description: str = Field(default="", max_length=1000)
    total_amount: Decimal = Field(..., gt=0)
    remaining_amount: Decimal
    due_date: Optional[date] = None
    status: DebtStatus = DebtStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='before')
    @classmethod
    def default_remaining(cls, data):
        """A new debt starts with nothing paid."""
        if isinstance(data, dict) and data.get("remaining_amount") in (None, ""):
            data = dict(data)
            data["remaining_amount"] = data.get("total_amount")
        return data

    def settled(self, total_paid: Decimal) -> 'Debt':
        """Copy with remaining_amount and status derived from the amount paid so far."""
        remaining = self.total_amount - total_paid
        return self.model_copy(update={
            "remaining_amount": remaining,
            "status": status_for(remaining),
            "updated_at": datetime.utcnow(),
        })

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Active debts past their due date are overdue."""
        today = today or date.today()
        return (
            self.status == DebtStatus.ACTIVE
            and self.due_date is not None
            and self.due_date < today
        )


def status_for(remaining_amount: Decimal) -> DebtStatus:
    """PAID iff nothing is left to pay."""
    return DebtStatus.PAID if remaining_amount <= 0 else DebtStatus.ACTIVE


class DebtPayment(BaseModel):
    """
    One payment against a debt. Payments are never edited; they are only
    created or deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    debt_id: UUID
    account_id: Optional[UUID] = None
    payment_date: date
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.TRANSFER
    description: str = Field(default="", max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionFilters(BaseModel):
    """Filters for listing transactions. All optional."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    text: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on description or category"
    )
    account_id: Optional[UUID] = None

    def cache_params(self) -> dict:
        """Non-empty filter values as JSON-friendly primitives."""
        return self.model_dump(mode="json", exclude_none=True)


class PageRequest(BaseModel):
    """1-based page request."""

    number: int = Field(default=1, ge=1)
    size: int = Field(default=10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.number - 1) * self.size


class TransactionPage(BaseModel):
    """One page of transactions plus the total match count."""

    items: list[Transaction] = Field(default_factory=list)
    total_count: int = Field(ge=0)
    page: int = Field(ge=1)
    page_size: int = Field(ge=1)

    @property
    def total_pages(self) -> int:
        if self.total_count == 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


class FinancialSummary(BaseModel):
    """Income/expense totals over an optional date range."""

    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    count: int = Field(default=0, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class DebtStats(BaseModel):
    """Aggregate view over a user's debts and receivables."""

    total_debt: Decimal = Decimal("0")
    remaining_debt: Decimal = Decimal("0")
    total_receivable: Decimal = Decimal("0")
    remaining_receivable: Decimal = Decimal("0")
    active_debts: int = 0
    active_receivables: int = 0
    overdue: int = 0


class BalanceCheck(BaseModel):
    """Result of recomputing an account balance from its source records."""

    account_id: UUID
    recorded_balance: Decimal
    expected_balance: Decimal
    transaction_count: int = 0
    payment_count: int = 0
    checked_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def drift(self) -> Decimal:
        return self.recorded_balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


class DebtCheck(BaseModel):
    """Result of recomputing a debt's remaining amount from its payments."""

    debt_id: UUID
    recorded_remaining: Decimal
    expected_remaining: Decimal
    recorded_status: DebtStatus
    expected_status: DebtStatus
    payment_count: int = 0

    @property
    def is_consistent(self) -> bool:
        return (
            self.recorded_remaining == self.expected_remaining
            and self.recorded_status == self.expected_status
        )
