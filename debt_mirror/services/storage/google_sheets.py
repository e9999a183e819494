"""
Google Sheets Cloud Table Store

DESIGN DECISION: The authenticated backend is a spreadsheet with one
worksheet per table because:
1. Account holders can view their own ledger directly in Sheets
2. No database server to run
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the ledger service orders its writes instead)
- Limited query capabilities (we filter in Python)

Every value is written as text. Typed parsing happens one layer up,
where the cloud record store validates rows into pydantic models.
"""

import json
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from debt_mirror.config import GoogleSheetsSettings, get_settings
from debt_mirror.models.audit import AuditEvent, AuditEventType, AuditSeverity
from debt_mirror.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    RemoteError,
    RemoteTableInterface,
    StorageError,
)


# Column layout per table. "id" is always first.
TABLE_COLUMNS = {
    "debts": [
        "id",
        "user_id",
        "name",
        "description",
        "debt_type",
        "creditor_name",
        "currency_code",
        "principal",
        "current_balance",
        "interest_rate",
        "minimum_payment",
        "start_date",
        "due_date",
        "target_payoff_date",
        "status",
        "priority",
        "created_at",
        "updated_at",
    ],
    "income": [
        "id",
        "user_id",
        "source_name",
        "amount",
        "currency_code",
        "frequency",
        "is_primary",
        "created_at",
        "updated_at",
    ],
    "debt_transactions": [
        "id",
        "user_id",
        "debt_id",
        "type",
        "amount",
        "interest_amount",
        "new_balance",
        "notes",
        "created_at",
    ],
}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "mode",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

logger = structlog.get_logger(__name__)

_remote_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_not_exception_type(NotFoundError),
    reraise=True,
)


def encode_cell(value: Any) -> str:
    """Render a JSON-compatible value as sheet text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
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

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet whose first row is the column header."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        if table not in TABLE_COLUMNS:
            raise RemoteError(f"Unknown table: {table}")
        return self.get_worksheet(
            self._settings.sheet_name_for(table),
            TABLE_COLUMNS[table],
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsTableStore(RemoteTableInterface):
    """
    Google Sheets implementation of the cloud table operations.

    Rows are stored one per sheet row in TABLE_COLUMNS order. Unknown
    columns in a row are dropped on write.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _to_sheet_row(self, table: str, row: dict[str, Any]) -> list[str]:
        return [encode_cell(row.get(column)) for column in TABLE_COLUMNS[table]]

    def _from_sheet_row(self, table: str, values: list) -> dict[str, Any]:
        """Convert a sheet row to a dict. Empty cells become None."""
        def safe_get(index: int) -> Optional[str]:
            try:
                return values[index] if values[index] != "" else None
            except IndexError:
                return None

        return {
            column: safe_get(index)
            for index, column in enumerate(TABLE_COLUMNS[table])
        }

    def _find_row(self, sheet: gspread.Worksheet, row_id: str) -> tuple[int, list]:
        """Return (1-based sheet row number, values) for an id."""
        all_rows = sheet.get_all_values()
        for idx, values in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if values and values[0] == row_id:
                return idx, values
        raise NotFoundError(f"Row not found: {row_id}")

    @_remote_retry
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Append a row with a fresh uuid4 id."""
        try:
            sheet = self._client.get_table_sheet(table)
            stored = dict(row)
            stored["id"] = str(uuid4())
            sheet.append_row(self._to_sheet_row(table, stored), value_input_option="RAW")
        except StorageError:
            raise
        except Exception as e:
            raise RemoteError(f"Failed to insert into {table}: {e}")
        return self._from_sheet_row(table, self._to_sheet_row(table, stored))

    @_remote_retry
    async def update(
        self,
        table: str,
        row_id: str,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            sheet = self._client.get_table_sheet(table)
            idx, values = self._find_row(sheet, row_id)
            current = self._from_sheet_row(table, values)
            current.update(patch)
            current["id"] = row_id
            new_values = self._to_sheet_row(table, current)
            sheet.update(
                range_name=f"A{idx}",
                values=[new_values],
                value_input_option="RAW",
            )
        except StorageError:
            raise
        except Exception as e:
            raise RemoteError(f"Failed to update {table} row {row_id}: {e}")
        return self._from_sheet_row(table, new_values)

    @_remote_retry
    async def delete(self, table: str, row_id: str) -> bool:
        try:
            sheet = self._client.get_table_sheet(table)
            try:
                idx, _ = self._find_row(sheet, row_id)
            except NotFoundError:
                return False
            sheet.delete_rows(idx)
            return True
        except StorageError:
            raise
        except Exception as e:
            raise RemoteError(f"Failed to delete {table} row {row_id}: {e}")

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching every filter (compared as sheet text)."""
        encoded = {column: encode_cell(value) for column, value in (filters or {}).items()}
        try:
            sheet = self._client.get_table_sheet(table)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except StorageError:
            raise
        except Exception as e:
            raise RemoteError(f"Failed to read {table}: {e}")

        columns = TABLE_COLUMNS[table]
        rows = []
        for values in all_rows:
            if not values or not values[0]:  # Skip empty rows
                continue
            matches = True
            for column, expected in encoded.items():
                index = columns.index(column) if column in columns else -1
                actual = values[index] if 0 <= index < len(values) else ""
                if actual != expected:
                    matches = False
                    break
            if matches:
                rows.append(self._from_sheet_row(table, values))
        return rows


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            mode=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_sheet_write_failed", error=str(e))
            return False

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue  # Skip malformed rows

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
