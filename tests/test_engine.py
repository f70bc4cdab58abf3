# tests/test_engine.py

import pytest

from storebonus.calculator.engine import (
    CalculationConfig, classify_rows, determine_category, number_value, process_sales, process_stage2,
    process_stage3, recalculate_points, split_return_points, text_value, update_reward_row, update_row,
)
from storebonus.calculator.grouping import ProductGroupIndex
from storebonus.calculator.resolver import RepurchaseResolver
from storebonus.calculator.rows import ExclusionItem, RewardRule, Stage1Row
from storebonus.calculator.schema import (
    CAT_ADULT_DRINK, CAT_ADULT_FORMULA, CAT_DISPENSING, CAT_INFANT_CEREAL, CAT_OTHER, CAT_PEDIATRIC_CASH,
    CAT_RETURN, REWARD_FORMAT_COUNT, REWARD_FORMAT_VOUCHER, Stage1Status, StaffRole,
)
from storebonus.errors import BonusError


class FakeHistory:
    """Durable history stand-in: a set of (customer, normalized item) pairs."""

    def __init__(self, purchases=()):
        self.purchases = set(purchases)
        self.calls = 0

    def has_purchase(self, customer_id, related_keys):
        self.calls += 1
        return any((customer_id, key) in self.purchases for key in related_keys)


@pytest.fixture
def resolver():
    return RepurchaseResolver(FakeHistory(), ProductGroupIndex([]))


def stage1_row(**overrides):
    values = dict(
        id='r1', sales_person='Amy', date='05', customer_id='123', customer_name='', item_id='A001',
        item_name='', quantity=1, amount=0, discount_ratio='', original_points=10, calculated_points=0,
        category='保健食品', status=Stage1Status.DEVELOP,
    )
    values.update(overrides)
    values.setdefault('product_category', values['category'])
    return Stage1Row(**values)


# --- Value helpers ---

def test_text_and_number_values():
    assert text_value(123.0) == '123'
    assert text_value(' abc ') == 'abc'
    assert text_value(None) == ''
    assert number_value('1,200') == 1200
    assert number_value('2.5') == 2.5
    assert number_value('n/a') == 0
    assert number_value(None) == 0


def test_determine_category():
    assert determine_category({'品類一': '05-1'}) == CAT_ADULT_FORMULA
    assert determine_category({'品類一': '05-3', '品項名稱': '寶寶米精'}) == CAT_INFANT_CEREAL
    assert determine_category({'品類一': '05-3', '品項名稱': '蔬菜泥'}) == '嬰幼兒副食品'
    assert determine_category({'品類一': 'ZZ'}) == CAT_OTHER


# --- Point recalculation ---

def test_formula_points_are_divided_per_unit():
    row = stage1_row(category=CAT_ADULT_FORMULA, original_points=11, quantity=3)
    assert recalculate_points(row, StaffRole.SALES) == 3

    row.status = Stage1Status.REPURCHASE
    assert recalculate_points(row, StaffRole.SALES) == 1


def test_role_changes_the_points_of_the_same_row():
    row = stage1_row(category=CAT_ADULT_DRINK, original_points=10, quantity=2)
    assert recalculate_points(row, StaffRole.SALES) == 5
    assert recalculate_points(row, StaffRole.PHARMACIST) == 10


def test_split_return_points():
    assert split_return_points(7) == (4, 3)
    assert split_return_points(8) == (4, 4)
    assert split_return_points(-7) == (-3, -4)


def test_return_with_developer_keeps_seller_half():
    row = stage1_row(status=Stage1Status.RETURN, quantity=-1, original_points=7, original_developer='Ben')
    assert recalculate_points(row) == 4

    row.original_developer = None
    assert recalculate_points(row) == 7

    row.original_developer = '無'
    assert recalculate_points(row) == 7


def test_manual_points_override_and_clear():
    row = stage1_row(original_points=10)
    update_row(row, StaffRole.SALES, manual_points=99)
    assert row.calculated_points == 99

    update_row(row, StaffRole.SALES, status=Stage1Status.REPURCHASE.value)
    assert row.calculated_points == 99

    update_row(row, StaffRole.SALES, manual_points=None)
    assert row.manual_points is None
    assert row.calculated_points == 5


@pytest.mark.parametrize('role', [StaffRole.SALES, StaffRole.PHARMACIST])
@pytest.mark.parametrize('status', [Stage1Status.DEVELOP, Stage1Status.REPURCHASE, Stage1Status.HALF_YEAR])
def test_pediatric_cash_never_earns_points(role, status):
    row = stage1_row(category=CAT_PEDIATRIC_CASH, original_points=50, status=status)
    assert recalculate_points(row, role) == 0


def test_pediatric_cash_return_is_zero_even_after_relabel():
    row = stage1_row(category=CAT_RETURN, product_category=CAT_PEDIATRIC_CASH, status=Stage1Status.RETURN,
                     quantity=-1, original_points=-50, raw={'品類一': '06-1'})
    assert recalculate_points(row) == 0


def test_deleted_rows_are_zero():
    row = stage1_row(status=Stage1Status.DELETE)
    assert recalculate_points(row) == 0


# --- Editing ---

def test_only_negative_rows_can_become_returns():
    row = stage1_row(quantity=1)
    with pytest.raises(BonusError):
        update_row(row, StaffRole.SALES, status=Stage1Status.RETURN.value)


def test_return_rows_can_only_be_returns_or_deleted():
    row = stage1_row(status=Stage1Status.RETURN, quantity=-1, original_points=-10)
    with pytest.raises(BonusError):
        update_row(row, StaffRole.SALES, status=Stage1Status.DEVELOP.value)

    update_row(row, StaffRole.SALES, status=Stage1Status.DELETE.value)
    assert row.calculated_points == 0


def test_unknown_status_and_fields_are_rejected():
    row = stage1_row()
    with pytest.raises(BonusError):
        update_row(row, StaffRole.SALES, status='bogus')
    with pytest.raises(BonusError):
        update_row(row, StaffRole.SALES, original_points=500)


def test_return_target_relabels_and_restores_category():
    row = stage1_row(status=Stage1Status.RETURN, quantity=-1, original_points=-10)
    update_row(row, StaffRole.SALES, return_target='Ben')
    assert row.category == CAT_RETURN
    assert row.calculated_points == -10

    update_row(row, StaffRole.SALES, return_target='')
    assert row.return_target is None
    assert row.category == '保健食品'


# --- Stage 1 classification ---

def test_same_customer_and_item_on_a_later_ticket_is_a_repurchase(make_row, resolver):
    rows = classify_rows([
        make_row(ticket='S1130501001'),
        make_row(ticket='S1130502001'),
    ], StaffRole.SALES, resolver)

    by_ticket = {r.ticket_no: r for r in rows}
    assert by_ticket['S1130501001'].status == Stage1Status.DEVELOP
    assert by_ticket['S1130501001'].calculated_points == 10
    assert by_ticket['S1130502001'].status == Stage1Status.REPURCHASE
    assert by_ticket['S1130502001'].calculated_points == 5


def test_lines_on_the_same_ticket_are_not_repurchases(make_row, resolver):
    rows = classify_rows([make_row(), make_row()], StaffRole.SALES, resolver)
    assert [r.status for r in rows] == [Stage1Status.DEVELOP, Stage1Status.DEVELOP]


def test_durable_history_marks_repurchase(make_row):
    history = FakeHistory({('00123456', 'A001')})
    resolver = RepurchaseResolver(history, ProductGroupIndex([]))
    rows = classify_rows([make_row()], StaffRole.SALES, resolver)
    assert rows[0].status == Stage1Status.REPURCHASE


def test_sales_filters_drop_unqualified_rows(make_row, resolver):
    rows = classify_rows([
        make_row(customer='undefined'),
        make_row(price=0),
        make_row(points=0),
        make_row(debt=100),
        make_row(cat1='05-2', unit='罐'),
        make_row(item='DISP1'),
        make_row(item='KEEP', ticket='S1130509001'),
    ], StaffRole.SALES, resolver, [ExclusionItem(item_id='DISP1', category=CAT_DISPENSING)])
    assert [r.item_id for r in rows] == ['KEEP']


def test_sales_return_rows(make_row, resolver):
    rows = classify_rows([make_row(qty=-1, points=-10, subtotal=-500)], StaffRole.SALES, resolver)
    assert rows[0].status == Stage1Status.RETURN
    assert rows[0].calculated_points == -10


def test_imported_return_target_relabels_category(make_row, resolver):
    rows = classify_rows([make_row(qty=-1, points=-10, return_target='Ben')], StaffRole.SALES, resolver)
    assert rows[0].category == CAT_RETURN
    assert rows[0].return_target == 'Ben'


def test_pharmacist_classification(make_row, resolver):
    exclusion = [ExclusionItem(item_id='RX9', category=CAT_DISPENSING), ExclusionItem(item_id='OT1', category='其他')]
    rows = classify_rows([
        make_row(item='F1', cat1='05-1', qty=3, points=11),
        make_row(item='RX9', customer=None, qty=2, points=40),
        make_row(item='OT1', points=6),
        make_row(item='NOT_LISTED', points=6),
    ], StaffRole.PHARMACIST, resolver, exclusion)

    by_item = {r.item_id: r for r in rows}
    assert set(by_item) == {'F1', 'RX9', 'OT1'}
    assert by_item['F1'].category == CAT_ADULT_FORMULA
    assert by_item['F1'].calculated_points == 3
    assert by_item['RX9'].category == CAT_DISPENSING
    assert by_item['RX9'].calculated_points == 40
    assert by_item['OT1'].category == CAT_OTHER


def test_rows_are_sorted_by_category_priority(make_row, resolver):
    rows = classify_rows([
        make_row(item='X1', cat1='07-1', ticket='S1130501001'),
        make_row(item='X2', cat1='05-1', ticket='S1130501002'),
    ], StaffRole.SALES, resolver)
    assert [r.item_id for r in rows] == ['X2', 'X1']


# --- Stage 2 and 3 ---

def test_stage2_matches_reward_rules(make_row):
    rules = [
        RewardRule(item_id='A001', note='滿額', category='保健', reward=50, reward_label='50'),
        RewardRule(item_id='V1', category='禮券', format=REWARD_FORMAT_VOUCHER),
    ]
    rows = process_stage2([make_row(qty=2), make_row(item='V1'), make_row(item='NONE')], rules)
    assert len(rows) == 2
    cash = next(r for r in rows if r.item_id == 'A001')
    voucher = next(r for r in rows if r.item_id == 'V1')
    assert cash.cash_value() == 100
    assert voucher.display_value() == '1張'

    update_reward_row(voucher, custom_reward='80')
    assert voucher.display_value() == 80
    update_reward_row(voucher, clear_custom_reward=True, is_deleted=True)
    assert voucher.custom_reward is None
    assert voucher.is_deleted


def test_stage2_pharmacist_dispensing_tallies(make_row):
    rows = process_stage2([
        make_row(item='001727', qty=200),
        make_row(item='001727', qty=150),
        make_row(item='001345', qty=4),
    ], [], StaffRole.PHARMACIST)
    tallies = {r.item_id: r.quantity for r in rows}
    assert tallies == {'001727': 350, '001345': 4}
    assert all(r.format == REWARD_FORMAT_COUNT for r in rows)


def test_stage3_cosmetic_totals(make_row):
    summaries = process_stage3([
        make_row(cat2='C01', subtotal=1000),
        make_row(cat2='C01', subtotal=500),
        make_row(cat2='C03', subtotal=200),
        make_row(cat2='ZZ', subtotal=999),
    ])
    assert len(summaries) == 1
    brands = {r.category_name: r.sub_total for r in summaries[0].rows}
    assert brands['理膚寶水'] == 1500
    assert brands['雅漾'] == 200
    assert summaries[0].total == 1700


# --- Full run ---

def test_process_sales_shares_repurchase_state_across_people(make_row, resolver):
    processed = process_sales([
        make_row(person='Zoe', ticket='S1130501001'),
        make_row(person='Amy', ticket='S1130503001'),
        make_row(person='Cat', ticket='S1130504001'),
    ], {'Zoe': StaffRole.SALES, 'Amy': StaffRole.SALES, 'Cat': StaffRole.NO_BONUS}, [], [], resolver)

    assert set(processed) == {'Zoe', 'Amy'}
    assert processed['Zoe'].stage1[0].status == Stage1Status.DEVELOP
    assert processed['Amy'].stage1[0].status == Stage1Status.REPURCHASE


def test_process_sales_classifies_in_report_order_across_roles(make_row, resolver):
    processed = process_sales([
        make_row(person='Rx', ticket='S1130501001'),
        make_row(person='Amy', ticket='S1130520001'),
    ], {'Rx': StaffRole.PHARMACIST, 'Amy': StaffRole.SALES},
        [ExclusionItem(item_id='A001', category=CAT_OTHER)], [], resolver)

    assert list(processed) == ['Amy', 'Rx']
    assert processed['Rx'].stage1[0].status == Stage1Status.DEVELOP
    assert processed['Amy'].stage1[0].status == Stage1Status.REPURCHASE
    assert processed['Amy'].stage1[0].calculated_points == 5


def test_process_sales_uses_default_role_for_unknown_people(make_row, resolver):
    config = CalculationConfig(default_role=StaffRole.PHARMACIST)
    processed = process_sales([make_row(person='Dan', cat1='05-1', qty=3, points=11)], {}, [], [], resolver, config)
    assert processed['Dan'].role == StaffRole.PHARMACIST
    assert processed['Dan'].stage3.rows == []


def test_config_loads_seeded_settings(app):
    from storebonus.seed import seed_data

    seed_data()
    config = CalculationConfig.load()
    assert config.dispensing_threshold == 300
    assert config.dispensing_rate == 10
    assert config.default_role == StaffRole.SALES
    assert '3+1' in config.repurchase_options
