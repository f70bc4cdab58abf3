import json
from flask import current_app
from storebonus import db
from storebonus.calculator.history import HistoryStore
from storebonus.calculator.schema import DEFAULT_REPURCHASE_OPTIONS
from storebonus.models import AppSetting

DEFAULT_SETTINGS = {
    # key: [value, description, value_type]
    'DISPENSING_BONUS_THRESHOLD': ['300', '自費調劑件數超過此門檻才開始計算調劑獎金', 'int'],
    'DISPENSING_BONUS_RATE': ['10', '超過門檻後每件自費調劑的獎金', 'int'],
    'DEFAULT_STAFF_ROLE': ['SALES', '未分類人員的預設職位 (SALES / PHARMACIST / NO_BONUS)', 'string'],
    'REPURCHASE_OPTIONS': [json.dumps(DEFAULT_REPURCHASE_OPTIONS, ensure_ascii=False), '回購類型選項 (JSON 格式)', 'json'],
}

def seed_data():
    """Populates the database with default settings and stores."""
    # Seed App Settings
    for key, data in DEFAULT_SETTINGS.items():
        setting = AppSetting.query.filter_by(key=key).first()
        if not setting: # Only add if it doesn't exist
            setting = AppSetting(key=key, value=data[0], description=data[1], value_type=data[2])
            db.session.add(setting)
            print(f'Seeding setting: {key}')
    db.session.commit()

    # Seed the store list
    added = HistoryStore().seed_default_stores(current_app.config['DEFAULT_STORE_NAMES'])
    if added:
        print(f'Seeded {added} default stores.')
