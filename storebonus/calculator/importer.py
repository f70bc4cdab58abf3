# ==============================================================================
# storebonus/calculator/importer.py
# ------------------------------------------------------------------------------
# Chunked history import and the multi-file import queue.
# ==============================================================================

import logging
from dataclasses import dataclass

from storebonus.errors import PersistenceError
from .engine import number_value, text_value
from .history import HistoryStore
from .reader import read_sheet_rows
from .schema import (
    COL_CAT_1, COL_CUSTOMER_ID, COL_ITEM_ID, COL_ITEM_NAME, COL_ITEM_NAME_ALT, COL_POINTS, COL_POINTS_ALT,
    COL_QUANTITY, COL_SALES_DATE, COL_SALES_PERSON, COL_SUBTOTAL, COL_TICKET_NO, COL_UNIT, COL_UNIT_PRICE,
    COL_UNIT_PRICE_ALT, UNDEFINED_SENTINEL, UNNAMED_STORE,
)

DEFAULT_CHUNK_SIZE = 2000


def history_record_from_row(row, store_name):
    """
    Maps a sales-report row to a history record dict, or None when the row
    has no usable customer or item ID.
    """
    customer_id = text_value(row.get(COL_CUSTOMER_ID))
    item_id = text_value(row.get(COL_ITEM_ID))
    if not customer_id or not item_id or UNDEFINED_SENTINEL in (customer_id, item_id):
        return None
    ticket_no = text_value(row.get(COL_TICKET_NO))
    return {
        'customer_id': customer_id,
        'item_id': item_id,
        'date': text_value(row.get(COL_SALES_DATE)) or ticket_no,
        'quantity': int(number_value(row.get(COL_QUANTITY))),
        'price': number_value(row.get(COL_UNIT_PRICE) or row.get(COL_UNIT_PRICE_ALT)),
        'unit': text_value(row.get(COL_UNIT)),
        'store_name': store_name,
        'sales_person': text_value(row.get(COL_SALES_PERSON)),
        'item_name': text_value(row.get(COL_ITEM_NAME) or row.get(COL_ITEM_NAME_ALT)) or None,
        'amount': number_value(row.get(COL_SUBTOTAL)),
        'category': text_value(row.get(COL_CAT_1)) or None,
        'points': number_value(row.get(COL_POINTS) or row.get(COL_POINTS_ALT)),
        'ticket_no': ticket_no or None,
    }


@dataclass
class ImportProgress:
    total: int
    read: int = 0
    inserted: int = 0
    skipped: int = 0

    @property
    def percent(self):
        return round(self.read * 100 / self.total) if self.total else 100


class HistoryImporter:
    """
    Appends sales rows to the history store in fixed-size chunks. Each chunk
    is committed before control returns to the caller.
    """

    def __init__(self, store=None, chunk_size=DEFAULT_CHUNK_SIZE):
        self.store = store or HistoryStore()
        self.chunk_size = max(1, int(chunk_size))

    def iter_import(self, rows, store_name):
        """Yields an ImportProgress after every committed chunk."""
        progress = ImportProgress(total=len(rows))
        buffer = []
        for row in rows:
            record = history_record_from_row(row, store_name)
            progress.read += 1
            if record is None:
                progress.skipped += 1
            else:
                buffer.append(record)
            if len(buffer) >= self.chunk_size:
                progress.inserted += self.store.bulk_insert(buffer)
                buffer = []
                logging.info(f"Imported chunk into '{store_name}': {progress.inserted}/{progress.total}")
                yield progress
        if buffer:
            progress.inserted += self.store.bulk_insert(buffer)
        yield progress

    def import_rows(self, rows, store_name, on_progress=None):
        progress = ImportProgress(total=len(rows))
        for progress in self.iter_import(rows, store_name):
            if on_progress:
                on_progress(progress)
        logging.info(f"Import into '{store_name}' finished: {progress.inserted} inserted, "
                     f"{progress.skipped} skipped.")
        return progress


def detect_store(filename, store_names):
    """Returns the longest known store name contained in the file name, or None."""
    matches = [name for name in store_names if name and name in (filename or '')]
    return max(matches, key=len) if matches else None


class CancellationToken:
    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self):
        return self._cancelled


@dataclass
class QueuedFile:
    filename: str
    source: object
    store_name: str
    status: str = 'pending'  # 'pending', 'processing', 'success', 'error'
    message: str = ''
    inserted: int = 0
    skipped: int = 0


class ImportQueue:
    """
    Imports files one after another. Cancellation is honoured between
    files; a file that has started always runs to the end.
    """

    def __init__(self, importer=None, store_names=()):
        self.importer = importer or HistoryImporter()
        self.store_names = list(store_names)
        self.files = []

    def add(self, filename, source, store_name=None):
        store_name = (store_name or '').strip() or detect_store(filename, self.store_names) or UNNAMED_STORE
        queued = QueuedFile(filename=filename, source=source, store_name=store_name)
        self.files.append(queued)
        return queued

    def pending(self):
        return [f for f in self.files if f.status == 'pending']

    def run(self, token=None, on_progress=None):
        token = token or CancellationToken()
        for queued in self.pending():
            if token.cancelled:
                logging.warning(f"Import queue stopped; {len(self.pending())} files left pending.")
                break
            queued.status = 'processing'
            try:
                rows = read_sheet_rows(queued.source)
                progress = self.importer.import_rows(
                    rows, queued.store_name,
                    on_progress=(lambda p, f=queued: on_progress(f, p)) if on_progress else None,
                )
            except PersistenceError as e:
                queued.status, queued.message = 'error', str(e)
                raise
            except Exception as e:
                logging.error(f"Import of '{queued.filename}' failed: {e}", exc_info=True)
                queued.status, queued.message = 'error', str(e)
                continue
            queued.status = 'success'
            queued.inserted, queued.skipped = progress.inserted, progress.skipped
        return self.files
