# ==============================================================================
# storebonus/models.py
# ------------------------------------------------------------------------------
# Defines the database schema using SQLAlchemy ORM models.
# ==============================================================================

from datetime import datetime
from storebonus import db
import json

class HistoryRecord(db.Model):
    """
    One accepted historical sales line. Many records may share the same
    customer/item pair; rows are appended by imports and never edited.
    """
    __tablename__ = 'history_record'
    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(64), nullable=False, index=True)
    item_id = db.Column(db.String(64), nullable=False, index=True)
    # Item ID with whitespace and leading zeros stripped, used for matching
    item_key = db.Column(db.String(64), nullable=False)
    date = db.Column(db.String(32), nullable=False, default='')
    quantity = db.Column(db.Integer, nullable=False, default=0)
    store_name = db.Column(db.String(128), index=True)
    sales_person = db.Column(db.String(128))

    price = db.Column(db.Float)
    unit = db.Column(db.String(32))
    item_name = db.Column(db.String(256))
    amount = db.Column(db.Float)
    category = db.Column(db.String(64))
    points = db.Column(db.Float)
    ticket_no = db.Column(db.String(64))

    __table_args__ = (db.Index('ix_history_customer_item', 'customer_id', 'item_key'),)

    # Columns copied verbatim by backup and restore
    EXPORT_FIELDS = ('customer_id', 'item_id', 'item_key', 'date', 'quantity', 'store_name',
                     'sales_person', 'price', 'unit', 'item_name', 'amount', 'category',
                     'points', 'ticket_no')

    def to_dict(self):
        return {field: getattr(self, field) for field in self.EXPORT_FIELDS}

    def __repr__(self):
        return f'<HistoryRecord {self.id}: {self.customer_id}/{self.item_id} {self.date}>'

class StoreRecord(db.Model):
    """A branch name offered as an import target. Removing one keeps its history."""
    __tablename__ = 'store_record'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<StoreRecord {self.id}: {self.name}>'

class StaffMember(db.Model):
    """
    Employee master data. The name joins against the sales-person column of
    the POS export; the role drives every classification rule.
    """
    __tablename__ = 'staff_member'
    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.String(32), nullable=False, default='')
    name = db.Column(db.String(128), unique=True, nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default='SALES')
    branch = db.Column(db.String(128))
    customer_id = db.Column(db.String(64))
    points_standard = db.Column(db.Float)
    cosmetic_standard = db.Column(db.Float)

    def __repr__(self):
        return f'<StaffMember {self.staff_id}: {self.name} ({self.role})>'

class ProductGroup(db.Model):
    """Item IDs that count as the same product when checking repurchases."""
    __tablename__ = 'product_group'
    id = db.Column(db.Integer, primary_key=True)
    group_name = db.Column(db.String(128), unique=True, nullable=False)
    items = db.relationship('ProductGroupItem', backref='group', lazy='selectin',
                            cascade="all, delete-orphan", order_by='ProductGroupItem.id')

    def __repr__(self):
        return f'<ProductGroup {self.id}: {self.group_name}>'

class ProductGroupItem(db.Model):
    __tablename__ = 'product_group_item'
    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.String(64), nullable=False)
    alias = db.Column(db.String(32), nullable=False, default='')
    group_id = db.Column(db.Integer, db.ForeignKey('product_group.id'), nullable=False)

    def __repr__(self):
        return f'<ProductGroupItem {self.alias}:{self.item_id}>'

class ExportTemplate(db.Model):
    """
    The uploaded spreadsheet template for one role, together with the
    cell-coordinate mapping the exporter writes into it.
    """
    __tablename__ = 'export_template'
    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(16), unique=True, nullable=False)
    name = db.Column(db.String(256), nullable=False)
    data = db.Column(db.LargeBinary, nullable=False)
    mapping_json = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<ExportTemplate {self.role}: {self.name}>'

class CalculationSession(db.Model):
    """
    A saved calculation: the classified per-person data, including every
    manual edit, so work can be resumed later.
    """
    __tablename__ = 'calculation_session'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    report_date = db.Column(db.String(32))
    created_at = db.Column(db.DateTime, index=True, default=datetime.utcnow)
    payload_json = db.Column(db.Text, nullable=False)

    def __repr__(self):
        return f'<CalculationSession {self.id}: {self.name}>'

class AppSetting(db.Model):
    """
    Stores key-value pairs for business rules that users may tune without
    touching code.
    """
    __tablename__ = 'app_setting'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    value = db.Column(db.Text, nullable=False)
    description = db.Column(db.String(512))
    value_type = db.Column(db.String(32), default='string') # 'float', 'int', 'string', 'json'

    def __repr__(self):
        return f'<AppSetting {self.key}: {self.value}>'

    def get_value(self):
        """Casts the string value to its correct Python type."""
        if self.value_type == 'float':
            return float(self.value)
        if self.value_type == 'int':
            return int(self.value)
        if self.value_type == 'json':
            return json.loads(self.value)
        return self.value
