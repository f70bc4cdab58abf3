# tests/test_aggregation.py

from types import SimpleNamespace

from storebonus.calculator.aggregation import (
    build_repurchase_matrix, sorted_people, stage2_totals, staff_sort_key, summarize_person,
)
from storebonus.calculator.engine import CalculationConfig
from storebonus.calculator.rows import PersonSheet, Stage1Row, Stage2Row
from storebonus.calculator.schema import CAT_ADULT_DRINK, CAT_RETURN, Stage1Status, StaffRole


def stage1_row(row_id, **overrides):
    values = dict(
        id=row_id, sales_person='', date='05', customer_id='123', customer_name='', item_id='A001',
        item_name='', quantity=1, amount=0, discount_ratio='', original_points=10, calculated_points=0,
        category='保健食品', status=Stage1Status.DEVELOP,
    )
    values.update(overrides)
    values.setdefault('product_category', values['category'])
    return Stage1Row(**values)


def reward_row(row_id, quantity=1, reward=0, format='現金', item_id='R1', **overrides):
    values = dict(
        id=row_id, sales_person='', display_date='05', sort_date='', customer_id='123', customer_name='',
        item_id=item_id, item_name='', quantity=quantity, category='', note='', reward=reward,
        reward_label='', format=format,
    )
    values.update(overrides)
    return Stage2Row(**values)


def staff(staff_id, points_standard=None, branch=''):
    return SimpleNamespace(staff_id=staff_id, branch=branch, points_standard=points_standard,
                           cosmetic_standard=None)


# --- Ledger ---

def test_ledger_skips_deleted_repurchased_and_transferred_rows():
    processed = {
        'Amy': PersonSheet(role=StaffRole.SALES, stage1=[
            stage1_row('d1', original_points=10),
            stage1_row('d2', status=Stage1Status.DELETE),
            stage1_row('rp', status=Stage1Status.REPURCHASE),
            stage1_row('rt', status=Stage1Status.RETURN, quantity=-1, original_points=-6,
                       return_target='Ben', category=CAT_RETURN),
        ]),
        'Ben': PersonSheet(role=StaffRole.SALES, stage1=[stage1_row('b1', original_points=20)]),
    }
    config = CalculationConfig()

    amy = summarize_person(processed, 'Amy', config)
    assert [line.row.id for line in amy.lines] == ['d1']
    assert amy.total_points == 10

    ben = summarize_person(processed, 'Ben', config)
    assert ben.own_points == 20
    assert ben.incoming_points == -6
    assert ben.return_points == -6
    assert ben.total_points == 14
    incoming = [line for line in ben.lines if line.incoming]
    assert incoming[0].origin_person == 'Amy'


def test_incoming_return_uses_the_role_of_its_origin_sheet():
    row = stage1_row('rt', status=Stage1Status.RETURN, quantity=-2, original_points=-10, return_target='Ben',
                     category=CAT_RETURN, product_category=CAT_ADULT_DRINK, raw={'品類一': '05-2'})
    processed = {
        'Amy': PersonSheet(role=StaffRole.SALES, stage1=[row]),
        'Ben': PersonSheet(role=StaffRole.PHARMACIST),
    }
    ben = summarize_person(processed, 'Ben', CalculationConfig())
    assert ben.incoming_points == -5


def test_return_target_outside_the_run_still_leaves_the_ledger():
    processed = {'Amy': PersonSheet(role=StaffRole.SALES, stage1=[
        stage1_row('rt', status=Stage1Status.RETURN, quantity=-1, original_points=-6, return_target='Zed'),
    ])}
    assert summarize_person(processed, 'Amy', CalculationConfig()).total_points == 0


def test_standards_and_gaps_come_from_staff_records():
    processed = {'Amy': PersonSheet(role=StaffRole.SALES, stage1=[stage1_row('d1', original_points=30)])}
    summary = summarize_person(processed, 'Amy', CalculationConfig(), {'Amy': staff('007', 50, '總店')})
    assert summary.staff_id == '007'
    assert summary.store_name == '總店'
    assert summary.points_gap == -20
    assert summary.cosmetic_gap is None


# --- Rewards and dispensing ---

def test_stage2_totals():
    sheet = PersonSheet(role=StaffRole.SALES, stage2=[
        reward_row('c1', quantity=2, reward=50),
        reward_row('v1', quantity=3, format='禮券'),
        reward_row('v2', quantity=1, format='禮券', custom_reward=80),
        reward_row('x1', quantity=5, reward=50, is_deleted=True),
    ])
    assert stage2_totals(sheet) == {'cash': 180, 'vouchers': 3, 'self_paid': 0, 'service': 0}


def test_dispensing_bonus_above_threshold():
    sheet = PersonSheet(role=StaffRole.PHARMACIST, stage2=[
        reward_row('s1', quantity=350, format='統計', item_id='001727'),
        reward_row('s2', quantity=12, format='統計', item_id='001345'),
    ])
    summary = summarize_person({'Rx': sheet}, 'Rx', CalculationConfig(dispensing_threshold=300, dispensing_rate=10))
    assert summary.dispensing_self_paid == 350
    assert summary.dispensing_service == 12
    assert summary.dispensing_bonus == 500

    sheet.stage2[0].quantity = 250
    summary = summarize_person({'Rx': sheet}, 'Rx', CalculationConfig())
    assert summary.dispensing_bonus == 0


# --- Ordering ---

def test_people_sort_by_role_then_staff_id():
    processed = {
        'Amy': PersonSheet(role=StaffRole.SALES),
        'Ben': PersonSheet(role=StaffRole.SALES),
        'Cat': PersonSheet(role=StaffRole.SALES),
        'Rx': PersonSheet(role=StaffRole.PHARMACIST),
    }
    records = {'Amy': staff('10'), 'Ben': staff('9'), 'Rx': staff('1')}
    assert sorted_people(processed, processed, records) == ['Ben', 'Amy', 'Cat', 'Rx']
    assert staff_sort_key('Nobody') == ((999999,), 'Nobody')


# --- Repurchase matrix ---

def test_matrix_credits_developers():
    processed = {
        'Amy': PersonSheet(role=StaffRole.SALES, stage1=[
            stage1_row('rp', status=Stage1Status.REPURCHASE, original_points=10, original_developer='Ben'),
            stage1_row('rt', status=Stage1Status.RETURN, quantity=-1, original_points=7, original_developer='Ben'),
            stage1_row('nd', status=Stage1Status.REPURCHASE, original_points=10, original_developer='無'),
            stage1_row('dv', original_points=10, original_developer='Cat'),
        ]),
    }
    matrix = build_repurchase_matrix(processed)
    assert matrix.developers == ['Ben']
    lines = {line.row.id: line for line in matrix.sections[0].lines}
    assert set(lines) == {'rp', 'rt'}
    assert (lines['rp'].seller_points, lines['rp'].developer_points) == (5, 5)
    assert (lines['rt'].seller_points, lines['rt'].developer_points) == (4, 3)
    assert matrix.sections[0].seller_total == 9
    assert matrix.developer_grand_total('Ben') == 8


def test_matrix_respects_manual_points():
    processed = {'Amy': PersonSheet(role=StaffRole.SALES, stage1=[
        stage1_row('rp', status=Stage1Status.REPURCHASE, original_points=10, original_developer='Ben',
                   manual_points=8),
    ])}
    line = build_repurchase_matrix(processed).sections[0].lines[0]
    assert (line.seller_points, line.developer_points) == (8, 0)
