"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted document store because:
1. Family members can look at their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each collection is a worksheet; each document is one row holding its id,
its JSON body and a revision counter.

TRADEOFFS:
- No transactions. update_if() re-reads the row, compares, writes, and
  then re-reads the revision it wrote. A concurrent writer that slips in
  between is detected afterwards and reported as a lost swap.
- create() appends and then re-reads. If an earlier row already holds the
  id, the new row is deleted and DuplicateError raised; readers only ever
  see the first row per id.
- No push channel. subscribe() polls at a configurable interval.
- Limited query capabilities (we filter in Python).
"""

import asyncio
import json
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from moneymap.config import get_settings
from moneymap.models.audit import AuditEvent, AuditEventType, AuditSeverity
from moneymap.models.ledger import utcnow
from moneymap.services.storage.interface import (
    ID_FIELD,
    AuditStorageInterface,
    ConnectionError,
    Document,
    DocumentStore,
    DuplicateError,
    NotFoundError,
    Query,
    Snapshot,
    StorageError,
)


# Column layout shared by every collection worksheet
DOCUMENT_COLUMNS = [
    "id",
    "document_json",
    "revision",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "family_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Only transport failures are worth retrying; missing rows and lost swaps are answers
_transient = retry_if_exception_type((gspread.exceptions.APIError, ConnectionError))


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @property
    def poll_interval(self) -> float:
        return self._settings.poll_interval_seconds

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
        """Get or create a worksheet with the given header row."""
        if title in self._worksheets:
            return self._worksheets[title]
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
        self._worksheets[title] = sheet
        return sheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        return self.get_worksheet(collection, DOCUMENT_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsDocumentStore(DocumentStore):
    """
    Google Sheets implementation of the document store.

    Documents are stored as JSON in one row each. Every write bumps the
    row's revision so update_if() can tell whether someone else wrote in
    between its read and its write.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _row_to_document(row: list) -> Optional[Document]:
        if not row or not row[0]:
            return None
        try:
            document = json.loads(row[1]) if len(row) > 1 and row[1] else {}
        except json.JSONDecodeError:
            return None  # Skip malformed rows
        document[ID_FIELD] = row[0]
        return document

    @staticmethod
    def _document_to_row(document: Document, revision: int) -> list:
        body = {k: v for k, v in document.items() if k != ID_FIELD}
        return [
            document[ID_FIELD],
            json.dumps(body, default=str, sort_keys=True),
            str(revision),
            utcnow().isoformat(),
        ]

    @staticmethod
    def _revision(row: list) -> int:
        try:
            return int(row[2])
        except (IndexError, ValueError):
            return 0

    def _find_row(self, sheet: gspread.Worksheet, doc_id: str) -> tuple[Optional[int], Optional[list]]:
        """Return (1-based row index, row values) for a document id."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):  # Row 1 is header
            if row and row[0] == doc_id:
                return idx, row
        return None, None

    def _write_row(self, sheet: gspread.Worksheet, idx: int, row: list) -> None:
        sheet.update(values=[row], range_name=f"A{idx}:D{idx}", value_input_option="RAW")

    def _all_documents(self, collection: str) -> list[Document]:
        sheet = self._client.get_collection_sheet(collection)
        documents = []
        seen: set[str] = set()
        for row in sheet.get_all_values()[1:]:
            # The first row for an id is authoritative; later ones lost a create race
            if not row or row[0] in seen:
                continue
            seen.add(row[0])
            document = self._row_to_document(row)
            if document is not None:
                documents.append(document)
        return documents

    def _drop_losing_row(self, sheet: gspread.Worksheet, doc_id: str, row: list) -> bool:
        """
        After appending `row`, check that no earlier row holds the same id.

        Returns:
            True if an earlier row won; our row has then been deleted
        """
        matches = [
            (idx, values)
            for idx, values in enumerate(sheet.get_all_values()[1:], start=2)
            if values and values[0] == doc_id
        ]
        if len(matches) < 2 or matches[0][1] == row:
            return False
        for idx, values in reversed(matches[1:]):
            if values == row:
                sheet.delete_rows(idx)
                break
        return True

    @retry(
        retry=_transient,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            sheet = self._client.get_collection_sheet(collection)
            _, row = self._find_row(sheet, doc_id)
            return self._row_to_document(row) if row else None
        except gspread.exceptions.APIError:
            raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get {collection}/{doc_id}: {e}")

    @retry(
        retry=_transient,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def query(self, query: Query) -> list[Document]:
        try:
            return query.apply(self._all_documents(query.collection))
        except gspread.exceptions.APIError:
            raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to query {query.collection}: {e}")

    @retry(
        retry=_transient,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create(
        self,
        collection: str,
        data: Document,
        doc_id: Optional[str] = None,
    ) -> Document:
        doc_id = doc_id or data.get(ID_FIELD) or uuid4().hex
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, _ = self._find_row(sheet, doc_id)
            if idx is not None:
                raise DuplicateError(f"{collection}/{doc_id} already exists")
            document = dict(data)
            document[ID_FIELD] = doc_id
            new_row = self._document_to_row(document, 1)
            sheet.append_row(new_row, value_input_option="RAW")
            # append_row is not conditional: another writer may have added the same id meanwhile
            if self._drop_losing_row(sheet, doc_id, new_row):
                raise DuplicateError(f"{collection}/{doc_id} already exists")
            return document
        except gspread.exceptions.APIError:
            raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to create {collection}/{doc_id}: {e}")

    @retry(
        retry=_transient,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def update(self, collection: str, doc_id: str, patch: Document) -> Document:
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, row = self._find_row(sheet, doc_id)
            if idx is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            document = self._row_to_document(row) or {ID_FIELD: doc_id}
            document.update(patch)
            document[ID_FIELD] = doc_id
            self._write_row(sheet, idx, self._document_to_row(document, self._revision(row) + 1))
            return document
        except gspread.exceptions.APIError:
            raise
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {collection}/{doc_id}: {e}")

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        patch: Document,
    ) -> bool:
        # Not retried: a blind retry could apply a swap that was already lost
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, row = self._find_row(sheet, doc_id)
            if idx is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            document = self._row_to_document(row) or {ID_FIELD: doc_id}
            if document.get(field) != expected:
                return False

            revision = self._revision(row) + 1
            document.update(patch)
            document[ID_FIELD] = doc_id
            new_row = self._document_to_row(document, revision)
            self._write_row(sheet, idx, new_row)

            # Read back: if another writer landed on the same revision, the swap is lost
            _, written = self._find_row(sheet, doc_id)
            return bool(written) and written[1] == new_row[1] and self._revision(written) == revision
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed conditional update of {collection}/{doc_id}: {e}")

    @retry(
        retry=_transient,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, _ = self._find_row(sheet, doc_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except gspread.exceptions.APIError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete {collection}/{doc_id}: {e}")

    async def subscribe(self, query: Query) -> AsyncIterator[Snapshot]:
        last = await self.query(query)
        yield Snapshot.diff([], last)
        while True:
            await asyncio.sleep(self._client.poll_interval)
            current = await self.query(query)
            if current != last:
                yield Snapshot.diff(last, current)
                last = current


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
            family_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue
        return events

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
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
