# ==============================================================================
# storebonus/calculator/schema.py
# ------------------------------------------------------------------------------
# Column headers of the POS sales export, category tables and the other fixed
# business vocabulary. This module is the single source of truth for them.
# ==============================================================================

from enum import Enum


class Stage1Status(str, Enum):
    DEVELOP = '開發'
    HALF_YEAR = '隔半年'
    REPURCHASE = '回購'
    DELETE = '刪除'
    RETURN = '退貨'


class StaffRole(str, Enum):
    SALES = 'SALES'
    PHARMACIST = 'PHARMACIST'
    NO_BONUS = 'NO_BONUS'


ROLE_PRIORITY = {StaffRole.SALES: 1, StaffRole.PHARMACIST: 2, StaffRole.NO_BONUS: 3}
ROLE_LABELS = {StaffRole.SALES: '門市', StaffRole.PHARMACIST: '藥師', StaffRole.NO_BONUS: '無獎金'}

# --- Sales report columns ---
COL_SALES_PERSON = '銷售人員'
COL_CUSTOMER_ID = '客戶編號'
COL_CUSTOMER_NAME = '客戶名稱'
COL_ITEM_ID = '品項編號'
COL_ITEM_NAME = '品項名稱'
COL_ITEM_NAME_ALT = '品名'
COL_QUANTITY = '數量'
COL_UNIT_PRICE = '單價'
COL_UNIT_PRICE_ALT = '單價金額'
COL_UNIT = '單位'
COL_POINTS = '原始點數'
COL_POINTS_ALT = '點數'
COL_DEBT = '本次欠款'
COL_SUBTOTAL = '小計'
COL_DISCOUNT_RATIO = '折扣比'
COL_TICKET_NO = '單號'
COL_SALES_DATE = '銷售日期'
COL_CAT_1 = '品類一'
COL_CAT_2 = '品類二'
# Present only when a previously resolved sheet is processed again
COL_RETURN_TARGET = '退貨對象'

REQUIRED_SALES_COLUMNS = [
    COL_SALES_PERSON, COL_CUSTOMER_ID, COL_ITEM_ID, COL_QUANTITY,
    COL_TICKET_NO, COL_CAT_1,
]

# Literal text some POS exports write into empty customer cells
UNDEFINED_SENTINEL = 'undefined'
# Chosen in the developer picker to mean "nobody developed this customer"
NO_DEVELOPER = '無'
UNCLASSIFIED_STORE = '未分類 (舊資料)'
# Import target when the file name matches no known store
UNNAMED_STORE = '未命名分店'

# --- Categories ---
CAT_ADULT_FORMULA = '成人奶粉'
CAT_ADULT_DRINK = '成人奶水'
CAT_INFANT_CEREAL = '嬰幼兒米麥精'
CAT_INFANT_FOOD = '嬰幼兒副食品'
CAT_PEDIATRIC_CASH = '現金-小兒銷售'
CAT_DISPENSING = '調劑點數'
CAT_RETURN = '退換貨'
CAT_OTHER = '其他'

CATEGORY_MAP = {
    '01-1': '處方藥品',
    '01-2': '成藥',
    '02-1': '保健食品',
    '02-2': '營養補充品',
    '03-1': '醫療器材',
    '04-1': '嬰幼兒奶粉',
    '05-1': CAT_ADULT_FORMULA,
    '05-2': CAT_ADULT_DRINK,
    '05-3': CAT_INFANT_FOOD,
    '06-1': CAT_PEDIATRIC_CASH,
    '07-1': '日用品',
}

# Code whose items become infant cereal when the name mentions malt or rice
CEREAL_CODE = '05-3'
CEREAL_KEYWORDS = ('麥精', '米精')

# Milk cans and bottles under this code never earn points
EXCLUDED_MILK_CODE = '05-2'
EXCLUDED_MILK_UNITS = ('罐', '瓶')

PHARMACIST_FORMULA_CODE = '05-1'

# Categories whose raw points cover the whole quantity and are divided per unit
SALES_DIVIDED_CATEGORIES = frozenset({CAT_ADULT_FORMULA, CAT_ADULT_DRINK, CAT_INFANT_CEREAL})
PHARMACIST_DIVIDED_CATEGORIES = frozenset({CAT_ADULT_FORMULA})

STAGE1_SORT_ORDER = {
    CAT_ADULT_FORMULA: 1,
    CAT_ADULT_DRINK: 2,
    CAT_INFANT_CEREAL: 3,
    '嬰幼兒奶粉': 4,
    CAT_INFANT_FOOD: 5,
    '保健食品': 6,
    '營養補充品': 7,
    '醫療器材': 8,
    '成藥': 9,
    '處方藥品': 10,
    '日用品': 11,
    CAT_PEDIATRIC_CASH: 12,
    CAT_OTHER: 20,
    CAT_DISPENSING: 30,
    CAT_RETURN: 999,
}
UNLISTED_SORT_ORDER = 99

# --- Rewards (stage 2) ---
REWARD_FORMAT_CASH = '現金'
REWARD_FORMAT_VOUCHER = '禮券'
REWARD_FORMAT_COUNT = '統計'

DISPENSING_SELF_PAID_ID = '001727'
DISPENSING_SERVICE_ID = '001345'
DISPENSING_ITEMS = {
    DISPENSING_SELF_PAID_ID: ('自費調劑', '件'),
    DISPENSING_SERVICE_ID: ('調劑藥事服務費', '組'),
}
DISPENSING_REWARD_CATEGORY = '調劑'

# --- Cosmetics (stage 3) ---
COSMETIC_CODES = {
    'C01': '理膚寶水',
    'C02': '薇姿',
    'C03': '雅漾',
    'C04': '貝膚黛瑪',
    'C05': '芙卡蜜',
    'C09': '其他美妝',
}
COSMETIC_DISPLAY_ORDER = ['理膚寶水', '薇姿', '雅漾', '貝膚黛瑪', '芙卡蜜', '其他美妝']

DEFAULT_REPURCHASE_OPTIONS = [
    '3+1', '8+3', '12+5', '補2+1', '補7+3', '補11+5', '4+1', '10+3', '20+8',
    '補3+1', '補9+3', '補19+8', '小盒開發', '大盒開發', '調劑開發',
    '過年2件', '快閃2件', '母親節2件', '父親節2件',
]
