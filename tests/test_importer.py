# tests/test_importer.py

import io

import pytest
from openpyxl import Workbook

from storebonus.calculator.history import HistoryStore
from storebonus.calculator.importer import (
    CancellationToken, HistoryImporter, ImportQueue, detect_store, history_record_from_row,
)
from storebonus.calculator.reader import read_sales_file, read_sheet_rows
from storebonus.calculator.schema import UNNAMED_STORE
from storebonus.errors import PersistenceError


def xlsx(rows, headers=('銷售人員', '客戶編號', '品項編號', '數量', '單號', '品類一', '銷售日期')):
    wb = Workbook()
    ws = wb.active
    ws.append(list(headers))
    for row in rows:
        ws.append([row.get(h) for h in headers])
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def sales(count, customer='C1'):
    return [{'銷售人員': 'Amy', '客戶編號': customer, '品項編號': f"{i:04d}", '數量': 1,
             '單號': f"S11301{i:05d}", '品類一': '02-1', '銷售日期': '1130105'} for i in range(count)]


# --- Row mapping ---

def test_history_record_from_row(make_row):
    record = history_record_from_row(make_row(item='00123', ticket='S1130501009', date=None), '總店')
    assert record['customer_id'] == '00123456'
    assert record['item_id'] == '00123'
    assert record['date'] == 'S1130501009'
    assert record['store_name'] == '總店'

    assert history_record_from_row(make_row(customer='undefined'), '總店') is None
    assert history_record_from_row(make_row(item=None), '總店') is None


def test_detect_store_prefers_the_longest_match():
    names = ['中正', '中正二店', '總店']
    assert detect_store('2024_中正二店_銷售.xlsx', names) == '中正二店'
    assert detect_store('report.xlsx', names) is None


# --- Chunked import ---

def test_progress_is_reported_per_chunk(app):
    seen = []
    progress = HistoryImporter(chunk_size=50).import_rows(
        sales(120) + [{'客戶編號': 'undefined', '品項編號': 'X'}], '總店',
        on_progress=lambda p: seen.append(p.inserted),
    )
    assert seen == [50, 100, 120]
    assert progress.inserted == 120
    assert progress.skipped == 1
    assert progress.percent == 100
    assert HistoryStore().count_all() == 120


# --- Reading spreadsheets ---

def test_read_sheet_rows_skips_blank_cells():
    rows = read_sheet_rows(xlsx([{'銷售人員': 'Amy', '客戶編號': '00123', '數量': 2}]))
    assert rows == [{'銷售人員': 'Amy', '客戶編號': '00123', '數量': 2}]


def test_read_sales_file_reports_missing_columns():
    rows, errors = read_sales_file(xlsx([{'銷售人員': 'Amy'}], headers=('銷售人員', '客戶編號')))
    assert rows is None
    assert '品項編號' in errors[0]

    rows, errors = read_sales_file(io.BytesIO(b'not a workbook'))
    assert rows is None and errors


def test_read_sales_file_needs_a_sales_person():
    rows, errors = read_sales_file(xlsx([{'客戶編號': 'C1', '品項編號': 'A1'}]))
    assert rows is None
    assert errors == ['No sales person found in the report.']

    rows, errors = read_sales_file(xlsx(sales(3)))
    assert errors == []
    assert len(rows) == 3


# --- Queue ---

def test_queue_assigns_stores_and_imports_every_file(app):
    queue = ImportQueue(HistoryImporter(chunk_size=10), store_names=['總店', '中正店'])
    queue.add('中正店_2024.xlsx', xlsx(sales(15)))
    queue.add('misc.xlsx', xlsx(sales(5, customer='C2')))
    queue.add('misc2.xlsx', xlsx(sales(2, customer='C3')), store_name='總店')

    files = queue.run()
    assert [f.store_name for f in files] == ['中正店', UNNAMED_STORE, '總店']
    assert [f.status for f in files] == ['success'] * 3
    assert dict(HistoryStore().stats_by_store()) == {'中正店': 15, UNNAMED_STORE: 5, '總店': 2}


def test_queue_continues_after_a_bad_file(app):
    queue = ImportQueue(HistoryImporter())
    queue.add('broken.xlsx', io.BytesIO(b'garbage'), store_name='總店')
    queue.add('good.xlsx', xlsx(sales(4)), store_name='總店')

    broken, good = queue.run()
    assert broken.status == 'error'
    assert good.status == 'success'
    assert good.inserted == 4


def test_cancelled_queue_leaves_files_pending(app):
    token = CancellationToken()
    queue = ImportQueue(HistoryImporter())
    queue.add('a.xlsx', xlsx(sales(3)), store_name='總店')
    queue.add('b.xlsx', xlsx(sales(3, customer='C2')), store_name='總店')

    def cancel_after_first(queued, progress):
        token.cancel()

    queue.run(token, on_progress=cancel_after_first)
    assert [f.status for f in queue.files] == ['success', 'pending']
    assert len(queue.pending()) == 1
    assert HistoryStore().count_all() == 3


def test_storage_failure_stops_the_queue(app, monkeypatch):
    store = HistoryStore()

    def broken(records):
        raise PersistenceError('Could not insert history records.')

    monkeypatch.setattr(store, 'bulk_insert', broken)
    queue = ImportQueue(HistoryImporter(store))
    queue.add('a.xlsx', xlsx(sales(3)), store_name='總店')
    queue.add('b.xlsx', xlsx(sales(3)), store_name='總店')

    with pytest.raises(PersistenceError):
        queue.run()
    assert [f.status for f in queue.files] == ['error', 'pending']
