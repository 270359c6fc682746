"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. Non-technical users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No multi-row transactions. A unit of work is an in-process saga: every
  write registers a compensating write, and on failure the compensations
  run newest-first. If a compensation itself fails the sheet is left
  inconsistent and ReconciliationDriftError is raised.
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing business logic.
"""

import asyncio
import json
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Iterator, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from moneymoo.config import GoogleSheetsSettings, get_settings
from moneymoo.exceptions import (
    ConnectionError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    ReconciliationDriftError,
    StorageError,
)
from moneymoo.models.audit import AuditEvent, AuditEventType, AuditSeverity
from moneymoo.models.ledger import (
    Account,
    Category,
    Debt,
    DebtPayment,
    DebtStatus,
    DebtType,
    Transaction,
    TransactionFilters,
    TransactionType,
)
from moneymoo.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    matches_filters,
    sort_transactions,
)

logger = structlog.get_logger(__name__)


# Column mappings, one list per worksheet. Order is the on-sheet order.
ACCOUNT_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "type",
    "account_number",
    "initial_balance",
    "balance",
    "created_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "account_id",
    "type",
    "category",
    "description",
    "amount",
    "date",
    "created_at",
]

CATEGORY_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "type",
    "created_at",
]

DEBT_COLUMNS = [
    "id",
    "owner_id",
    "type",
    "contact_name",
    "contact_phone",
    "description",
    "total_amount",
    "remaining_amount",
    "due_date",
    "status",
    "created_at",
    "updated_at",
]

PAYMENT_COLUMNS = [
    "id",
    "debt_id",
    "account_id",
    "payment_date",
    "amount",
    "payment_method",
    "description",
    "created_at",
]

# Must match AuditEvent.to_sheets_row()
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Only transient API failures are worth retrying
sheets_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Wrap unexpected backend failures as StorageError; ledger errors pass through."""
    try:
        yield
    except LedgerError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to {action}: {e}") from e


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    Worksheets are created with a header row on first use.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, name: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet whose first row is `columns`."""
        if name in self._worksheets:
            return self._worksheets[name]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=name,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
            logger.info("worksheet_created", sheet=name)
        self._worksheets[name] = sheet
        return sheet


class SheetTable:
    """
    One worksheet holding one model type, one record per row.

    Rows are read and written as strings. Empty cells fall back to the
    model's field defaults when a row is parsed.
    """

    def __init__(self, client: Any, name: str, columns: list[str], model: type[BaseModel]):
        self._client = client
        self.name = name
        self.columns = columns
        self.model = model

    def _sheet(self):
        return self._client.get_worksheet(self.name, self.columns)

    def to_row(self, record: BaseModel) -> list[str]:
        data = record.model_dump(mode="json")
        return ["" if data.get(c) is None else str(data[c]) for c in self.columns]

    def from_row(self, row: list) -> BaseModel:
        data = {
            column: value
            for column, value in zip(self.columns, row)
            if value != ""
        }
        return self.model.model_validate(data)

    @sheets_retry
    def rows(self) -> list[tuple[int, list]]:
        """(sheet row number, values) for every non-empty data row."""
        all_rows = self._sheet().get_all_values()
        # Row 1 is the header
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)
            if row and row[0]
        ]

    def records(self) -> list[BaseModel]:
        records = []
        for idx, row in self.rows():
            try:
                records.append(self.from_row(row))
            except ValueError as e:
                logger.warning("malformed_row_skipped", sheet=self.name, row=idx, error=str(e))
        return records

    def find(self, record_id: UUID) -> Optional[tuple[int, BaseModel]]:
        key = str(record_id)
        for idx, row in self.rows():
            if row[0] == key:
                return idx, self.from_row(row)
        return None

    @sheets_retry
    def append(self, record: BaseModel) -> None:
        self._sheet().append_row(self.to_row(record), value_input_option="RAW")

    @sheets_retry
    def replace(self, idx: int, record: BaseModel) -> None:
        self._sheet().update(
            range_name=f"A{idx}",
            values=[self.to_row(record)],
            value_input_option="RAW",
        )

    @sheets_retry
    def remove(self, idx: int) -> None:
        self._sheet().delete_rows(idx)

    # Lookups by id, used by compensations after row numbers may have shifted

    def replace_by_id(self, record: BaseModel) -> None:
        found = self.find(record.id)
        if found is None:
            raise NotFoundError(f"{self.name} row not found: {record.id}", entity_id=record.id)
        self.replace(found[0], record)

    def remove_by_id(self, record_id: UUID) -> None:
        found = self.find(record_id)
        if found is not None:
            self.remove(found[0])


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    One worksheet per entity. Writes made inside a unit of work register
    their compensations; writes outside one are applied directly.
    """

    def __init__(self, client: Optional[Any] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.settings
        self._accounts = SheetTable(self._client, names.accounts_sheet_name, ACCOUNT_COLUMNS, Account)
        self._transactions = SheetTable(
            self._client, names.transactions_sheet_name, TRANSACTION_COLUMNS, Transaction
        )
        self._categories = SheetTable(self._client, names.categories_sheet_name, CATEGORY_COLUMNS, Category)
        self._debts = SheetTable(self._client, names.debts_sheet_name, DEBT_COLUMNS, Debt)
        self._payments = SheetTable(self._client, names.payments_sheet_name, PAYMENT_COLUMNS, DebtPayment)
        self._lock = asyncio.Lock()
        self._compensations: Optional[list[tuple[str, Callable[[], None]]]] = None

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def unit_of_work(
        self,
        operation: str,
        entity_id: Optional[Any] = None,
    ) -> AsyncIterator[None]:
        async with self._lock:
            self._compensations = []
            try:
                yield
            except BaseException as e:
                failures = self._compensate()
                if failures:
                    logger.critical(
                        "compensation_failed",
                        operation=operation,
                        entity_id=str(entity_id) if entity_id else None,
                        failures=failures,
                    )
                    raise ReconciliationDriftError(
                        f"Rollback of {operation} incomplete: {len(failures)} compensating writes failed",
                        operation=operation,
                        entity_id=entity_id,
                        details={"cause": str(e), "failed_compensations": failures},
                    ) from e
                if isinstance(e, LedgerError):
                    e.with_context(operation, entity_id)
                raise
            finally:
                self._compensations = None

    def _compensate(self) -> list[dict]:
        """Run registered compensations newest-first; return the ones that failed."""
        failures = []
        for label, undo in reversed(self._compensations or []):
            try:
                undo()
            except Exception as e:
                failures.append({"step": label, "error": str(e)})
        return failures

    def _register(self, label: str, undo: Callable[[], None]) -> None:
        if self._compensations is not None:
            self._compensations.append((label, undo))

    def _insert(self, table: SheetTable, record: BaseModel) -> None:
        table.append(record)
        self._register(f"insert {table.name} {record.id}", lambda: table.remove_by_id(record.id))

    def _replace(self, table: SheetTable, record: BaseModel, label: str) -> None:
        found = table.find(record.id)
        if found is None:
            raise NotFoundError(f"{label} not found: {record.id}", entity_id=record.id)
        idx, previous = found
        table.replace(idx, record)
        self._register(f"update {table.name} {record.id}", lambda: table.replace_by_id(previous))

    def _delete(self, table: SheetTable, record_id: UUID) -> bool:
        found = table.find(record_id)
        if found is None:
            return False
        idx, previous = found
        table.remove(idx)
        self._register(f"delete {table.name} {record_id}", lambda: table.append(previous))
        return True

    def _get(self, table: SheetTable, record_id: UUID):
        found = table.find(record_id)
        return found[1] if found else None

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def save_account(self, account: Account) -> Account:
        with storage_errors("save account"):
            self._insert(self._accounts, account)
        return account

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        with storage_errors("get account"):
            return self._get(self._accounts, account_id)

    async def update_account(self, account: Account) -> Account:
        with storage_errors("update account"):
            self._replace(self._accounts, account, "Account")
        return account

    async def delete_account(self, account_id: UUID) -> bool:
        with storage_errors("delete account"):
            return self._delete(self._accounts, account_id)

    async def list_accounts(self, owner_id: str) -> list[Account]:
        with storage_errors("list accounts"):
            accounts = [a for a in self._accounts.records() if a.owner_id == owner_id]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _check_unique(self, transaction: Transaction) -> None:
        key = transaction.identity_key()
        for existing in self._transactions.records():
            if existing.id != transaction.id and existing.identity_key() == key:
                raise DuplicateError(
                    "Transaction violates uniqueness on (owner, amount, description, category, date)",
                    existing_id=existing.id,
                )

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        with storage_errors("save transaction"):
            self._check_unique(transaction)
            self._insert(self._transactions, transaction)
        return transaction

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        with storage_errors("get transaction"):
            return self._get(self._transactions, transaction_id)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        with storage_errors("update transaction"):
            self._check_unique(transaction)
            self._replace(self._transactions, transaction, "Transaction")
        return transaction

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        with storage_errors("delete transaction"):
            return self._delete(self._transactions, transaction_id)

    def _matching(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters],
    ) -> list[Transaction]:
        with storage_errors("list transactions"):
            return [
                t for t in self._transactions.records()
                if t.owner_id == owner_id and matches_filters(t, filters)
            ]

    async def list_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        ordered = sort_transactions(self._matching(owner_id, filters))
        if limit is None:
            return ordered[offset:]
        return ordered[offset:offset + limit]

    async def count_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
    ) -> int:
        return len(self._matching(owner_id, filters))

    async def find_duplicate_transaction(
        self,
        owner_id: str,
        amount: Decimal,
        description: str,
        category: str,
        on_date: date,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        key = (owner_id, amount, description, category, on_date)
        for tx in self._matching(owner_id, None):
            if tx.id != exclude_id and tx.identity_key() == key:
                return tx
        return None

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def save_category(self, category: Category) -> Category:
        with storage_errors("save category"):
            self._insert(self._categories, category)
        return category

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        with storage_errors("get category"):
            return self._get(self._categories, category_id)

    async def delete_category(self, category_id: UUID) -> bool:
        with storage_errors("delete category"):
            return self._delete(self._categories, category_id)

    async def list_categories(
        self,
        owner_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        with storage_errors("list categories"):
            categories = [
                c for c in self._categories.records()
                if c.owner_id == owner_id
                and (category_type is None or c.type == category_type)
            ]
        categories.sort(key=lambda c: c.created_at, reverse=True)
        return categories

    # ------------------------------------------------------------------
    # Debts
    # ------------------------------------------------------------------

    async def save_debt(self, debt: Debt) -> Debt:
        with storage_errors("save debt"):
            self._insert(self._debts, debt)
        return debt

    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        with storage_errors("get debt"):
            return self._get(self._debts, debt_id)

    async def update_debt(self, debt: Debt) -> Debt:
        with storage_errors("update debt"):
            self._replace(self._debts, debt, "Debt")
        return debt

    async def delete_debt(self, debt_id: UUID) -> bool:
        with storage_errors("delete debt"):
            return self._delete(self._debts, debt_id)

    async def list_debts(
        self,
        owner_id: str,
        debt_type: Optional[DebtType] = None,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        with storage_errors("list debts"):
            debts = [
                d for d in self._debts.records()
                if d.owner_id == owner_id
                and (debt_type is None or d.type == debt_type)
                and (status is None or d.status == status)
            ]
        debts.sort(key=lambda d: d.created_at, reverse=True)
        return debts

    # ------------------------------------------------------------------
    # Debt payments
    # ------------------------------------------------------------------

    async def save_payment(self, payment: DebtPayment) -> DebtPayment:
        with storage_errors("save payment"):
            self._insert(self._payments, payment)
        return payment

    async def get_payment(self, payment_id: UUID) -> Optional[DebtPayment]:
        with storage_errors("get payment"):
            return self._get(self._payments, payment_id)

    async def update_payment(self, payment: DebtPayment) -> DebtPayment:
        with storage_errors("update payment"):
            self._replace(self._payments, payment, "Payment")
        return payment

    async def delete_payment(self, payment_id: UUID) -> bool:
        with storage_errors("delete payment"):
            return self._delete(self._payments, payment_id)

    async def list_payments(self, debt_id: UUID) -> list[DebtPayment]:
        with storage_errors("list payments"):
            payments = [p for p in self._payments.records() if p.debt_id == debt_id]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments

    async def list_payments_by_account(self, account_id: UUID) -> list[DebtPayment]:
        with storage_errors("list payments"):
            payments = [p for p in self._payments.records() if p.account_id == account_id]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[Any] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self):
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            owner_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _events(self, keep: Callable[[list], bool]) -> list[AuditEvent]:
        with storage_errors("get audit events"):
            all_rows = self._sheet().get_all_values()[1:]
        events = []
        for row in all_rows:
            if not row or not row[0] or not keep(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError as e:
                logger.warning("malformed_audit_row_skipped", error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        with storage_errors("write audit event"):
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        key = str(correlation_id)
        events = self._events(lambda row: len(row) > 7 and row[7] == key)
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        key = str(entity_id)
        events = self._events(
            lambda row: len(row) > 6 and row[5] == entity_type and row[6] == key
        )
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._events(lambda row: True)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
