# ==============================================================================
# storebonus/main/routes.py
# ------------------------------------------------------------------------------
# JSON endpoints used by the desktop front end. Each route is a thin wrapper
# around the calculator and export functions.
# ==============================================================================

import io
import json
import os
from datetime import datetime

from flask import current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from storebonus.main import bp
from storebonus.errors import BonusError
from storebonus.calculator import grouping, sessions, staff as staff_service
from storebonus.calculator.aggregation import build_repurchase_matrix, sorted_people, summarize_person
from storebonus.calculator.engine import CalculationConfig, process_sales, update_reward_row, update_row
from storebonus.calculator.history import HistoryStore
from storebonus.calculator.importer import HistoryImporter, ImportQueue
from storebonus.calculator.reader import (parse_exclusion_rows, parse_reward_rules, parse_staff_rows,
                                          read_sales_file, read_sheet_rows)
from storebonus.calculator.resolver import RepurchaseResolver
from storebonus.calculator.schema import COL_SALES_PERSON, StaffRole
from storebonus.export.templates import delete_template, get_mapping, get_template, save_mapping, save_template
from storebonus.export.writer import ReportExporter, load_role_templates

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

# --- Helper Functions ---

def allowed_file(filename):
    """Checks if the file extension is allowed based on the app config."""
    return '.' in filename and \
           os.path.splitext(filename)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']

def uploaded_file(field, required=True):
    """Returns (filename, BytesIO) for an uploaded spreadsheet, or (None, None)."""
    file = request.files.get(field)
    if file is None or file.filename == '':
        if required:
            raise BonusError(f"No file was uploaded for '{field}'.")
        return None, None
    if not allowed_file(file.filename):
        raise BonusError('Only .xlsx files are accepted.')
    return file.filename, io.BytesIO(file.read())

def json_body():
    return request.get_json(silent=True) or {}

def role_arg(value):
    try:
        return StaffRole(value)
    except ValueError:
        raise BonusError(f"Unknown role '{value}'.")

def build_resolver():
    return RepurchaseResolver(HistoryStore(), grouping.ProductGroupIndex.from_db())

def find_row(processed, row_id, person=None):
    """Returns (person, sheet, row) for a stage-1 row ID."""
    people = [person] if person else list(processed)
    for name in people:
        sheet = processed.get(name)
        row = sheet.find_row(row_id) if sheet else None
        if row is not None:
            return name, sheet, row
    raise BonusError(f"Row {row_id} was not found.")

def summary_dict(summary):
    return {
        'person': summary.person,
        'role': summary.role.value,
        'staff_id': summary.staff_id,
        'store_name': summary.store_name,
        'own_points': summary.own_points,
        'incoming_points': summary.incoming_points,
        'total_points': summary.total_points,
        'develop_points': summary.develop_points,
        'return_points': summary.return_points,
        'cash_reward': summary.cash_reward,
        'voucher_count': summary.voucher_count,
        'dispensing_self_paid': summary.dispensing_self_paid,
        'dispensing_service': summary.dispensing_service,
        'dispensing_bonus': summary.dispensing_bonus,
        'cosmetic_total': summary.cosmetic_total,
        'points_gap': summary.points_gap,
        'cosmetic_gap': summary.cosmetic_gap,
        'lines': [dict(line.row.to_dict(), points=line.points, incoming=line.incoming,
                       origin_person=line.origin_person) for line in summary.lines],
    }

# --- Error Handling ---

@bp.app_errorhandler(BonusError)
def handle_bonus_error(e):
    return jsonify({'error': str(e)}), e.status_code

@bp.app_errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({'error': e.description}), e.code
    current_app.logger.error(f"Unhandled error: {e}", exc_info=True)
    return jsonify({'error': 'An unexpected error occurred. Check the server log.'}), 500

# --- History Store ---

@bp.route('/api/history/stats')
def history_stats():
    store = HistoryStore()
    return jsonify({
        'count': store.count_all(),
        'stores': [{'store_name': name, 'count': count} for name, count in store.stats_by_store()],
    })

@bp.route('/api/history/<store_name>/years')
def history_years(store_name):
    return jsonify(HistoryStore().years_for_store(store_name))

@bp.route('/api/history/<store_name>/<year>/months')
def history_months(store_name, year):
    return jsonify([{'month': m, 'count': c} for m, c in HistoryStore().monthly_stats(store_name, year)])

@bp.route('/api/history/<store_name>/records')
def history_records(store_name):
    records = HistoryStore().page_records(
        store_name,
        year=request.args.get('year'),
        month=request.args.get('month'),
        offset=request.args.get('offset', 0, type=int),
        limit=min(request.args.get('limit', 100, type=int), 1000),
    )
    return jsonify([dict(r.to_dict(), id=r.id) for r in records])

@bp.route('/api/history/item')
def history_item():
    """Past purchases of a product by a customer, used to pick the original developer."""
    customer_id = request.args.get('customer_id', '')
    lookup = grouping.ProductGroupIndex.from_db().lookup(request.args.get('item_id', ''))
    records = HistoryStore().item_history(customer_id, lookup.related_ids)
    return jsonify({
        'group_name': lookup.group_name,
        'records': [dict(r.to_dict(), alias=lookup.alias_for.get(r.item_key, '')) for r in records],
    })

@bp.route('/api/history/import', methods=['POST'])
def history_import():
    files = request.files.getlist('files')
    if not files:
        raise BonusError('No files were uploaded.')
    store = HistoryStore()
    queue = ImportQueue(
        importer=HistoryImporter(store, chunk_size=current_app.config['IMPORT_CHUNK_SIZE']),
        store_names=[s.name for s in store.list_stores()],
    )
    target = request.form.get('store_name')
    for file in files:
        if not allowed_file(file.filename):
            raise BonusError(f"'{file.filename}' is not an .xlsx file.")
        queue.add(file.filename, io.BytesIO(file.read()), target)
    queue.run()
    return jsonify([{
        'filename': f.filename, 'store_name': f.store_name, 'status': f.status,
        'message': f.message, 'inserted': f.inserted, 'skipped': f.skipped,
    } for f in queue.files])

@bp.route('/api/history/<store_name>', methods=['DELETE'])
def history_delete_store(store_name):
    return jsonify({'deleted': HistoryStore().delete_by_store(store_name)})

@bp.route('/api/history/<store_name>/<year>', methods=['DELETE'])
def history_delete_year(store_name, year):
    return jsonify({'deleted': HistoryStore().delete_by_store_year(store_name, year)})

@bp.route('/api/history/<store_name>/<year>/<month>', methods=['DELETE'])
def history_delete_month(store_name, year, month):
    return jsonify({'deleted': HistoryStore().delete_by_store_year_month(store_name, year, month)})

@bp.route('/api/history/clear', methods=['POST'])
def history_clear():
    return jsonify({'deleted': HistoryStore().clear_all(json_body().get('confirm'))})

@bp.route('/api/history/backup')
def history_backup():
    payload = json.dumps(HistoryStore().export_backup(), ensure_ascii=False).encode('utf-8')
    filename = f"history_backup_{datetime.now().strftime('%Y%m%d')}.json"
    return send_file(io.BytesIO(payload), mimetype='application/json', as_attachment=True, download_name=filename)

@bp.route('/api/history/restore', methods=['POST'])
def history_restore():
    if 'file' in request.files:
        payload = json.loads(request.files['file'].read().decode('utf-8'))
        confirm = request.form.get('confirm')
    else:
        body = json_body()
        payload, confirm = body.get('backup') or {}, body.get('confirm')
    return jsonify({'restored': HistoryStore().restore_backup(payload, confirm)})

# --- Stores ---

@bp.route('/api/stores', methods=['GET', 'POST'])
def stores():
    store = HistoryStore()
    if request.method == 'POST':
        name = (json_body().get('name') or '').strip()
        if not name:
            raise BonusError('A store needs a name.')
        store.add_store(name)
    return jsonify([s.name for s in store.list_stores()])

@bp.route('/api/stores/<name>', methods=['PUT', 'DELETE'])
def store_detail(name):
    store = HistoryStore()
    if request.method == 'PUT':
        new_name = (json_body().get('name') or '').strip()
        if not new_name:
            raise BonusError('A store needs a name.')
        store.rename_store(name, new_name)
    else:
        store.delete_store(name)
    return jsonify([s.name for s in store.list_stores()])

# --- Calculation ---

@bp.route('/api/calculate', methods=['POST'])
def calculate():
    """Classifies an uploaded sales report and saves the result as a session."""
    _, sales_file = uploaded_file('sales')
    _, exclusion_file = uploaded_file('exclusion')
    _, rewards_file = uploaded_file('rewards')

    raw_rows, errors = read_sales_file(sales_file)
    if errors:
        return jsonify({'errors': errors}), 400
    exclusion_list = parse_exclusion_rows(read_sheet_rows(exclusion_file))
    reward_rules = parse_reward_rules(read_sheet_rows(rewards_file))

    chosen_roles = json.loads(request.form.get('roles') or '{}')
    if chosen_roles:
        staff_service.set_roles(chosen_roles)
    people = {str(r[COL_SALES_PERSON]) for r in raw_rows if r.get(COL_SALES_PERSON)}
    unknown = staff_service.unknown_people(people)

    config = CalculationConfig.load()
    processed = process_sales(raw_rows, staff_service.roles_by_name(), exclusion_list, reward_rules,
                              build_resolver(), config)
    name = request.form.get('name') or f"計算 {datetime.now().strftime('%Y-%m-%d %H:%M')}"
    session = sessions.save_session(name, processed, request.form.get('report_date'))
    return jsonify({
        'session_id': session.id,
        'unknown_people': unknown,
        'people': sorted_people(processed, processed, staff_service.staff_by_name()),
    })

@bp.route('/api/settings/repurchase-options')
def repurchase_options():
    return jsonify(CalculationConfig.load().repurchase_options)

# --- Sessions ---

@bp.route('/api/sessions')
def session_list():
    return jsonify([{'id': s.id, 'name': s.name, 'report_date': s.report_date,
                     'created_at': s.created_at.isoformat()} for s in sessions.list_sessions()])

@bp.route('/api/sessions/<int:session_id>', methods=['GET', 'DELETE'])
def session_detail(session_id):
    if request.method == 'DELETE':
        sessions.delete_session(session_id)
        return jsonify({'deleted': session_id})
    session, processed = sessions.load_session(session_id)
    return jsonify({'id': session.id, 'name': session.name, 'report_date': session.report_date,
                    'people': {p: sheet.to_dict() for p, sheet in processed.items()}})

@bp.route('/api/sessions/<int:session_id>/rows/<row_id>', methods=['PATCH'])
def session_row_edit(session_id, row_id):
    body = json_body()
    session, processed = sessions.load_session(session_id)
    _, sheet, row = find_row(processed, row_id, body.pop('person', None))
    update_row(row, sheet.role, **body)
    sessions.save_session(session.name, processed, session.report_date, session_id=session.id)
    return jsonify(row.to_dict())

@bp.route('/api/sessions/<int:session_id>/rewards/<row_id>', methods=['PATCH'])
def session_reward_edit(session_id, row_id):
    body = json_body()
    session, processed = sessions.load_session(session_id)
    for sheet in processed.values():
        row = next((r for r in sheet.stage2 if r.id == row_id), None)
        if row is not None:
            break
    else:
        raise BonusError(f"Reward row {row_id} was not found.")
    update_reward_row(row, is_deleted=body.get('is_deleted'), custom_reward=body.get('custom_reward'),
                      clear_custom_reward='custom_reward' in body and body['custom_reward'] in (None, ''))
    sessions.save_session(session.name, processed, session.report_date, session_id=session.id)
    return jsonify(row.to_dict())

@bp.route('/api/sessions/<int:session_id>/summary/<person>')
def session_summary(session_id, person):
    _, processed = sessions.load_session(session_id)
    if person not in processed:
        raise BonusError(f"'{person}' is not part of this session.")
    summary = summarize_person(processed, person, CalculationConfig.load(), staff_service.staff_by_name())
    return jsonify(summary_dict(summary))

@bp.route('/api/sessions/<int:session_id>/matrix')
def session_matrix(session_id):
    _, processed = sessions.load_session(session_id)
    matrix = build_repurchase_matrix(processed, staff_service.staff_by_name())
    return jsonify({
        'developers': matrix.developers,
        'sections': [{
            'seller': s.seller,
            'seller_total': s.seller_total,
            'developer_totals': {d: s.developer_total(d) for d in matrix.developers},
            'lines': [dict(l.row.to_dict(), seller_points=l.seller_points, developer_points=l.developer_points)
                      for l in s.lines],
        } for s in matrix.sections],
    })

@bp.route('/api/sessions/<int:session_id>/export', methods=['POST'])
def session_export(session_id):
    session, processed = sessions.load_session(session_id)
    people = json_body().get('people')
    exporter = ReportExporter(CalculationConfig.load(), staff_service.staff_by_name(),
                              load_role_templates(), session.report_date)
    data = exporter.build(processed, people)
    filename = f"獎金計算報表_{datetime.now().strftime('%Y-%m-%d')}.xlsx"
    return send_file(io.BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)

# --- Export Templates ---

@bp.route('/api/templates/<role>', methods=['GET', 'POST', 'DELETE'])
def template_detail(role):
    role = role_arg(role)
    if request.method == 'POST':
        filename, data = uploaded_file('file')
        save_template(role, filename, data.getvalue())
    elif request.method == 'DELETE':
        delete_template(role)
        return jsonify({'deleted': role.value})
    record = get_template(role)
    if record is None:
        return jsonify({'role': role.value, 'template': None, 'mapping': get_mapping(None).to_dict()})
    return jsonify({'role': role.value, 'template': record.name,
                    'updated_at': record.updated_at.isoformat() if record.updated_at else None,
                    'mapping': get_mapping(record).to_dict()})

@bp.route('/api/templates/<role>/mapping', methods=['PUT'])
def template_mapping(role):
    return jsonify(save_mapping(role_arg(role), json_body()).to_dict())

# --- Product Groups ---

def group_dict(group):
    return {'id': group.id, 'group_name': group.group_name,
            'items': [{'item_id': i.item_id, 'alias': i.alias} for i in group.items]}

@bp.route('/api/groups', methods=['GET', 'POST'])
def groups():
    if request.method == 'POST':
        body = json_body()
        items = [(i.get('item_id'), i.get('alias')) for i in body.get('items', [])]
        grouping.save_group(body.get('group_name') or '', items)
    return jsonify([group_dict(g) for g in grouping.list_groups()])

@bp.route('/api/groups/<int:group_id>', methods=['PUT', 'DELETE'])
def group_detail(group_id):
    if request.method == 'PUT':
        body = json_body()
        items = [(i.get('item_id'), i.get('alias')) for i in body.get('items', [])]
        grouping.save_group(body.get('group_name') or '', items, group_id=group_id)
    else:
        grouping.delete_group(group_id)
    return jsonify([group_dict(g) for g in grouping.list_groups()])

@bp.route('/api/groups/import', methods=['POST'])
def groups_import():
    _, data = uploaded_file('file')
    count = grouping.import_group_rows(read_sheet_rows(data))
    return jsonify({'imported': count, 'groups': [group_dict(g) for g in grouping.list_groups()]})

# --- Staff ---

def staff_dict(member):
    return {'staff_id': member.staff_id, 'name': member.name, 'role': member.role, 'branch': member.branch,
            'customer_id': member.customer_id, 'points_standard': member.points_standard,
            'cosmetic_standard': member.cosmetic_standard}

@bp.route('/api/staff', methods=['GET', 'POST'])
def staff():
    if request.method == 'POST':
        staff_service.save_staff(json_body())
    return jsonify([staff_dict(m) for m in staff_service.list_staff()])

@bp.route('/api/staff/<name>', methods=['DELETE'])
def staff_delete(name):
    staff_service.delete_staff(name)
    return jsonify([staff_dict(m) for m in staff_service.list_staff()])

@bp.route('/api/staff/import', methods=['POST'])
def staff_import():
    _, data = uploaded_file('file')
    overwrite = request.form.get('overwrite') == '1'
    count = staff_service.import_staff(parse_staff_rows(read_sheet_rows(data)), overwrite=overwrite)
    return jsonify({'imported': count, 'staff': [staff_dict(m) for m in staff_service.list_staff()]})
