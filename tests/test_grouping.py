# tests/test_grouping.py

import pytest

from storebonus.calculator.grouping import (
    ProductGroupIndex, import_group_rows, list_groups, normalize_item_id, save_group,
)
from storebonus.calculator.resolver import RepurchaseResolver
from storebonus.errors import ProductGroupConflictError


class NoHistory:
    def has_purchase(self, customer_id, related_keys):
        return False


def test_normalize_item_id():
    assert normalize_item_id(' 00123 ') == '123'
    assert normalize_item_id('A001') == 'A001'
    assert normalize_item_id(None) == ''


def test_leading_zeros_match_the_same_item():
    resolver = RepurchaseResolver(NoHistory(), ProductGroupIndex([]))
    resolver.register('C1', '00123', ticket_no='T1')
    assert resolver.is_repurchase('C1', '123', ticket_no='T2')


def test_grouped_items_count_as_one_product():
    index = ProductGroupIndex([('Milk', [('A1', '大罐'), ('00B2', '小罐')])])
    lookup = index.lookup('B2')
    assert lookup.related_ids == frozenset({'A1', 'B2'})
    assert lookup.alias_for == {'A1': '大罐', 'B2': '小罐'}
    assert index.lookup('C9').group_name == ''
    assert index.lookup('A1').group_name == 'Milk'

    resolver = RepurchaseResolver(NoHistory(), index)
    resolver.register('C1', 'A1', ticket_no='T1')
    assert resolver.is_repurchase('C1', 'B2', ticket_no='T2')
    assert not resolver.is_repurchase('C2', 'B2', ticket_no='T2')


def test_unknown_item_is_its_own_group():
    lookup = ProductGroupIndex([]).lookup('Z9')
    assert lookup.related_ids == frozenset({'Z9'})
    assert lookup.group_name == ''


def test_collision_in_old_data_keeps_the_last_group():
    index = ProductGroupIndex([('First', [('A1', 'x')]), ('Second', [('A1', 'y'), ('A2', 'z')])])
    assert index.lookup('A1').group_name == 'Second'
    assert index.lookup('A1').related_ids == frozenset({'A1', 'A2'})


def test_save_group_rejects_items_claimed_elsewhere(app):
    save_group('Milk', [('A1', '大罐')])
    with pytest.raises(ProductGroupConflictError) as excinfo:
        save_group('Other', [('00A1', 'dup')])
    assert excinfo.value.existing_group == 'Milk'


def test_save_group_edits_in_place(app):
    group = save_group('Milk', [('A1', '大罐')])
    save_group('Milk', [('A1', '大罐'), ('A2', '小罐')], group_id=group.id)

    groups = list_groups()
    assert len(groups) == 1
    assert [i.item_id for i in groups[0].items] == ['A1', 'A2']
    assert ProductGroupIndex.from_db().lookup('A2').related_ids == frozenset({'A1', 'A2'})


def test_import_group_rows_merges_by_name(app):
    save_group('Milk', [('A1', '大罐')])
    count = import_group_rows([
        {'群組名稱': 'Milk', '品項編號': 'A2', '簡稱': '小罐'},
        {'群組名稱': 'Cereal', '品項編號': 'B1', '簡稱': '米精'},
        {'群組名稱': 'Cereal', '品項編號': '', '簡稱': 'skip'},
    ])
    assert count == 2

    index = ProductGroupIndex.from_db()
    assert index.lookup('A2').related_ids == frozenset({'A1', 'A2'})
    assert index.lookup('B1').group_name == 'Cereal'
