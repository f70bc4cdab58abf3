# tests/conftest.py

import pytest

from config import Config


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    IMPORT_CHUNK_SIZE = 50


@pytest.fixture
def app():
    """
    Creates a fresh app with an empty in-memory database for every test and
    yields it inside an application context.
    """
    from storebonus import create_app, db

    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app  # The tests will run here
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def raw_row(**overrides):
    """
    One sales-report line keyed by the POS headers. Keyword names map to
    headers below; anything else is passed through as a header itself.
    """
    aliases = {
        'person': '銷售人員',
        'customer': '客戶編號',
        'customer_name': '客戶名稱',
        'item': '品項編號',
        'name': '品項名稱',
        'qty': '數量',
        'price': '單價',
        'points': '原始點數',
        'ticket': '單號',
        'date': '銷售日期',
        'cat1': '品類一',
        'cat2': '品類二',
        'subtotal': '小計',
        'unit': '單位',
        'debt': '本次欠款',
        'return_target': '退貨對象',
    }
    row = {
        '銷售人員': '王小明',
        '客戶編號': '00123456',
        '客戶名稱': '陳太太',
        '品項編號': 'A001',
        '品項名稱': '保健錠',
        '數量': 1,
        '單價': 500,
        '原始點數': 10,
        '單號': 'S1130501001',
        '銷售日期': '1130501',
        '品類一': '02-1',
        '小計': 500,
    }
    for key, value in overrides.items():
        header = aliases.get(key, key)
        if value is None:
            row.pop(header, None)
        else:
            row[header] = value
    return row


@pytest.fixture
def make_row():
    return raw_row
