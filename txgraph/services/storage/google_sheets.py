"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the production backend because the
household finance data already lives there:
1. Users can inspect the relation sheet directly
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: a rebuild is delete-then-append, so a crash can leave
  a partial relation set. The graph tolerates this because every rebuild
  replaces the whole set; the next successful run repairs it.
- Limited query capabilities: we filter in Python.
- Insert batches map to one append_rows call each, so a batch either
  lands entirely or not at all.
"""

import json
from datetime import datetime, timezone
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

from txgraph.config import GoogleSheetsSettings, get_settings
from txgraph.models.audit import AuditEvent, AuditEventType, AuditSeverity
from txgraph.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    RelationStoreInterface,
    StorageError,
    TransactionStoreInterface,
)


logger = structlog.get_logger(__name__)


# Column mappings for the Transactions sheet (maintained by the finance app)
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "occurred_at",
    "category_id",
    "account_id",
    "amount",
    "direction",
]

# Column mappings for the Relations sheet
RELATION_COLUMNS = [
    "id",
    "owner_user_id",
    "entity_type",
    "entity_id",
    "related_type",
    "related_id",
    "relation_type",
    "strength",
    "metadata_json",
]

# Column mappings for the Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _contiguous_ranges(indices: list[int]) -> list[tuple[int, int]]:
    """Group sorted row numbers into (start, end) runs, last run first."""
    ranges: list[tuple[int, int]] = []
    for idx in sorted(indices):
        if ranges and ranges[-1][1] == idx - 1:
            ranges[-1] = (ranges[-1][0], idx)
        else:
            ranges.append((idx, idx))
    return list(reversed(ranges))


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    One client is created per service instance and passed to each store.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

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

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
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

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get the Transactions worksheet. It is owned by the finance app."""
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(self._settings.transactions_sheet_name)
        except gspread.WorksheetNotFound:
            raise NotFoundError(
                f"Transactions sheet not found: {self._settings.transactions_sheet_name}"
            )

    def get_relations_sheet(self) -> gspread.Worksheet:
        """Get or create the Relations worksheet."""
        return self._get_or_create_sheet(
            self._settings.relations_sheet_name, RELATION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsTransactionStore(TransactionStoreInterface):
    """
    Reads transactions from the finance app's Transactions sheet.

    Rows are returned as raw strings; validation happens in the graph
    layer. Rows with an unreadable occurred_at are kept (at the end) so
    they can be reported as malformed instead of silently vanishing.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_dict(self, row: list) -> dict[str, Any]:
        padded = list(row) + [""] * (len(TRANSACTION_COLUMNS) - len(row))
        return dict(zip(TRANSACTION_COLUMNS, padded))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def transactions_for_user(
        self,
        user_id: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        """Fetch a user's transactions since a timestamp, oldest first."""
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except (ConnectionError, NotFoundError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to read transactions: {e}")

        dated: list[tuple[datetime, dict[str, Any]]] = []
        undated: list[dict[str, Any]] = []
        for row in all_rows:
            if not row or len(row) < 2 or row[1] != user_id:
                continue
            record = self._row_to_dict(row)
            occurred_at = _parse_timestamp(record["occurred_at"])
            if occurred_at is None:
                undated.append(record)
            elif occurred_at >= since:
                dated.append((occurred_at, record))

        dated.sort(key=lambda pair: pair[0])
        return [record for _, record in dated] + undated


class GoogleSheetsRelationStore(RelationStoreInterface):
    """
    Google Sheets implementation of relation storage.

    One relation per row. metadata is JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _record_to_row(self, record: dict[str, Any]) -> list:
        return [
            str(record.get("id") or uuid4()),
            record["owner_user_id"],
            record["entity_type"],
            record["entity_id"],
            record["related_type"],
            record["related_id"],
            record["relation_type"],
            str(record["strength"]),
            json.dumps(record.get("metadata") or {}, sort_keys=True, default=str),
        ]

    def _row_to_record(self, row: list) -> dict[str, Any]:
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        metadata_json = safe_get(8)
        return {
            "id": safe_get(0),
            "owner_user_id": safe_get(1),
            "entity_type": safe_get(2),
            "entity_id": safe_get(3),
            "related_type": safe_get(4),
            "related_id": safe_get(5),
            "relation_type": safe_get(6),
            "strength": float(safe_get(7, "0")),
            "metadata": json.loads(metadata_json) if metadata_json else {},
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete_all_for_user(self, user_id: str) -> int:
        """Delete every relation row owned by a user, bottom-up."""
        try:
            sheet = self._client.get_relations_sheet()
            all_rows = sheet.get_all_values()

            # Row 1 is the header; sheet rows are 1-based
            owned = [
                idx for idx, row in enumerate(all_rows[1:], start=2)
                if len(row) > 1 and row[1] == user_id
            ]
            for start, end in _contiguous_ranges(owned):
                sheet.delete_rows(start, end)
            return len(owned)
        except Exception as e:
            raise StorageError(f"Failed to delete relations: {e}")

    async def insert_batch(self, records: list[dict[str, Any]]) -> int:
        """Append a batch of relations in a single API call."""
        if not records:
            return 0
        try:
            sheet = self._client.get_relations_sheet()
            rows = [self._record_to_row(record) for record in records]
            sheet.append_rows(rows, value_input_option="RAW")
            return len(rows)
        except Exception as e:
            raise StorageError(f"Failed to insert relations: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Read every relation row owned by a user."""
        try:
            sheet = self._client.get_relations_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read relations: {e}")

        records = []
        for row in all_rows:
            if len(row) > 1 and row[1] == user_id:
                try:
                    records.append(self._row_to_record(row))
                except (ValueError, json.JSONDecodeError) as e:
                    logger.warning("relation_row_unreadable", row_id=row[0], error=str(e))
        return records


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
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
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
            # Audit logging should not break the main flow
            logger.warning("audit_event_write_failed", error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]

            events = []
            for row in all_rows:
                if row and len(row) > 6 and row[6] == str(correlation_id):
                    try:
                        events.append(self._row_to_event(row))
                    except ValueError:
                        continue

            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
