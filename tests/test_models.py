"""
Tests for Money Moo

Test strategy:
1. Unit tests for individual components (models, validators, cache)
2. Integration tests for ledger flows against in-memory storage
3. No real API calls in tests (Google Sheets is faked)
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from moneymoo.models.ledger import (
    Account,
    BalanceCheck,
    Debt,
    DebtCheck,
    DebtPayment,
    DebtStatus,
    DebtType,
    PageRequest,
    PaymentMethod,
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionType,
    status_for,
)
from moneymoo.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


def make_transaction(**overrides) -> Transaction:
    data = {
        "owner_id": "user-1",
        "type": TransactionType.EXPENSE,
        "category": "Food",
        "description": "Lunch",
        "amount": Decimal("30000"),
        "date": date(2024, 3, 1),
    }
    data.update(overrides)
    return Transaction(**data)


class TestLedgerModels:
    """Tests for ledger record models."""

    def test_account_defaults(self):
        """A new account starts at zero with no account number."""
        account = Account(owner_id="user-1", name="  Cash  ")
        assert account.name == "Cash"
        assert account.balance == Decimal("0")
        assert account.initial_balance == Decimal("0")
        assert account.account_number is None

    def test_transaction_signed_amount(self):
        """Income is positive, expense negative."""
        assert make_transaction(type=TransactionType.INCOME).signed_amount == Decimal("30000")
        assert make_transaction(type=TransactionType.EXPENSE).signed_amount == Decimal("-30000")

    def test_transaction_amount_must_be_positive(self):
        """Zero and negative amounts are rejected by the model."""
        with pytest.raises(ValueError):
            make_transaction(amount=Decimal("0"))
        with pytest.raises(ValueError):
            make_transaction(amount=Decimal("-5"))

    def test_identity_key_ignores_type_and_account(self):
        """Two records with the same owner/amount/description/category/date collide."""
        first = make_transaction(type=TransactionType.INCOME)
        second = make_transaction(account_id=uuid4())
        assert first.identity_key() == second.identity_key()
        assert first.identity_key() != make_transaction(description="Dinner").identity_key()

    def test_debt_remaining_defaults_to_total(self):
        """A new debt has nothing paid."""
        debt = Debt(
            owner_id="user-1",
            type=DebtType.DEBT,
            contact_name="Budi",
            total_amount=Decimal("1000000"),
        )
        assert debt.remaining_amount == Decimal("1000000")
        assert debt.status == DebtStatus.ACTIVE

    def test_debt_settled_derives_status(self):
        """settled() recomputes remaining and status from the amount paid."""
        debt = Debt(
            owner_id="user-1",
            type=DebtType.RECEIVABLE,
            contact_name="Sari",
            total_amount=Decimal("500000"),
        )
        partly = debt.settled(Decimal("200000"))
        assert partly.remaining_amount == Decimal("300000")
        assert partly.status == DebtStatus.ACTIVE

        fully = debt.settled(Decimal("500000"))
        assert fully.remaining_amount == Decimal("0")
        assert fully.status == DebtStatus.PAID
        # settled() returns a copy
        assert debt.remaining_amount == Decimal("500000")

    def test_status_for(self):
        assert status_for(Decimal("0")) == DebtStatus.PAID
        assert status_for(Decimal("-1")) == DebtStatus.PAID
        assert status_for(Decimal("0.01")) == DebtStatus.ACTIVE

    def test_debt_overdue_only_when_active(self):
        """Overdue is derived: active and past due."""
        yesterday = date.today() - timedelta(days=1)
        debt = Debt(
            owner_id="user-1",
            type=DebtType.DEBT,
            contact_name="Budi",
            total_amount=Decimal("100"),
            due_date=yesterday,
        )
        assert debt.is_overdue()
        assert not debt.settled(Decimal("100")).is_overdue()
        assert not debt.is_overdue(today=yesterday)

    def test_payment_defaults(self):
        payment = DebtPayment(
            debt_id=uuid4(),
            payment_date=date(2024, 3, 1),
            amount=Decimal("1000"),
        )
        assert payment.payment_method == PaymentMethod.TRANSFER
        assert payment.account_id is None
        assert payment.description == ""


class TestQueryModels:
    """Tests for filter, page and check models."""

    def test_filters_cache_params_drop_empty(self):
        """Only set filters become cache key params."""
        filters = TransactionFilters(type=TransactionType.INCOME, date_from=date(2024, 1, 1))
        assert filters.cache_params() == {"type": "income", "date_from": "2024-01-01"}

    def test_page_request_offset(self):
        assert PageRequest(number=3, size=10).offset == 20

    def test_page_request_bounds(self):
        with pytest.raises(ValueError):
            PageRequest(number=0)
        with pytest.raises(ValueError):
            PageRequest(size=101)

    def test_transaction_page_total_pages(self):
        assert TransactionPage(total_count=0, page=1, page_size=10).total_pages == 0
        assert TransactionPage(total_count=21, page=1, page_size=10).total_pages == 3

    def test_balance_check_drift(self):
        check = BalanceCheck(
            account_id=uuid4(),
            recorded_balance=Decimal("70000"),
            expected_balance=Decimal("50000"),
        )
        assert check.drift == Decimal("20000")
        assert not check.is_consistent

    def test_debt_check_consistency(self):
        check = DebtCheck(
            debt_id=uuid4(),
            recorded_remaining=Decimal("0"),
            expected_remaining=Decimal("0"),
            recorded_status=DebtStatus.ACTIVE,
            expected_status=DebtStatus.PAID,
        )
        assert not check.is_consistent


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Transaction created",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_sheets_row(self):
        """Rows have one cell per audit column."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            owner_id="user-1",
            description="Transaction created",
            details={"amount": Decimal("30000")},
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "transaction_created"
        assert row[4] == "user-1"
        assert '"30000"' in row[9]

    def test_reconciliation_drift_is_critical(self):
        """Drift is logged apart from user-facing errors."""
        event = AuditEventBuilder.reconciliation_drift(
            owner_id="user-1",
            entity_type="account",
            entity_id=uuid4(),
            operation="verify_account_balance",
            details={"drift": "100"},
        )
        assert event.event_type == AuditEventType.RECONCILIATION_DRIFT
        assert event.severity == AuditSeverity.CRITICAL
        assert event.details["operation"] == "verify_account_balance"
        assert event.details["drift"] == "100"

    def test_transaction_changed_description(self):
        event = AuditEventBuilder.transaction_changed(
            event_type=AuditEventType.TRANSACTION_DELETED,
            owner_id="user-1",
            transaction_id=uuid4(),
            amount="Rp 30.000",
            tx_type="expense",
            account_id=None,
        )
        assert event.description == "Transaction deleted: expense Rp 30.000"
        assert event.details["account_id"] is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
