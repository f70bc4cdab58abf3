# ==============================================================================
# storebonus/calculator/history.py
# ------------------------------------------------------------------------------
# The durable purchase-history store. Every query runs inside the Flask app
# context; storage failures surface as PersistenceError.
# ==============================================================================

import logging
from functools import wraps

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from storebonus import db
from storebonus.errors import ConfirmationRequired, PersistenceError
from storebonus.models import HistoryRecord, ProductGroup, ProductGroupItem, StoreRecord
from .grouping import normalize_item_id
from .schema import UNCLASSIFIED_STORE

CONFIRM_PHRASE = 'DELETE'


def _persistence(action):
    """Rolls back and re-raises storage errors as PersistenceError."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except SQLAlchemyError as e:
                db.session.rollback()
                logging.error(f"History store failed to {action}: {e}", exc_info=True)
                raise PersistenceError(f"Could not {action}.") from e
        return wrapper
    return decorator


def _require_confirmation(confirm):
    if confirm != CONFIRM_PHRASE:
        raise ConfirmationRequired(f"Type '{CONFIRM_PHRASE}' to confirm this operation.")


def _to_mapping(record):
    mapping = {k: record.get(k) for k in HistoryRecord.EXPORT_FIELDS}
    # item_key is always derived, never trusted from the input
    mapping['item_key'] = normalize_item_id(record.get('item_id'))
    mapping['date'] = mapping['date'] or ''
    mapping['quantity'] = mapping['quantity'] or 0
    mapping['store_name'] = mapping['store_name'] or None
    return mapping


def _store_filter(query, store_name):
    if store_name == UNCLASSIFIED_STORE:
        return query.filter(or_(HistoryRecord.store_name.is_(None), HistoryRecord.store_name == ''))
    return query.filter(HistoryRecord.store_name == store_name)


def _prefix_filter(query, year, month=None):
    prefix = f"{year}{month or ''}"
    return query.filter(HistoryRecord.date.like(f"{prefix}%"))


class HistoryStore:
    """
    Append-mostly store of historical purchases. Records are added by bulk
    import or restore and removed by store, store+year or store+year+month.
    """

    # --- Writes ---

    @_persistence('insert history records')
    def bulk_insert(self, records):
        """
        Appends records without deduplication.

        Args:
            records (list): dicts with HistoryRecord field names.

        Returns:
            int: number of rows written.
        """
        if not records:
            return 0
        mappings = [_to_mapping(r) for r in records]
        db.session.bulk_insert_mappings(HistoryRecord, mappings)
        db.session.commit()
        return len(mappings)

    @_persistence('delete history for store')
    def delete_by_store(self, store_name):
        deleted = _store_filter(HistoryRecord.query, store_name).delete(synchronize_session=False)
        db.session.commit()
        logging.info(f"Deleted {deleted} history records for store '{store_name}'.")
        return deleted

    @_persistence('delete history for year')
    def delete_by_store_year(self, store_name, year):
        query = _prefix_filter(_store_filter(HistoryRecord.query, store_name), year)
        deleted = query.delete(synchronize_session=False)
        db.session.commit()
        logging.info(f"Deleted {deleted} history records for '{store_name}' year {year}.")
        return deleted

    @_persistence('delete history for month')
    def delete_by_store_year_month(self, store_name, year, month):
        query = _prefix_filter(_store_filter(HistoryRecord.query, store_name), year, month)
        deleted = query.delete(synchronize_session=False)
        db.session.commit()
        logging.info(f"Deleted {deleted} history records for '{store_name}' {year}/{month}.")
        return deleted

    @_persistence('clear history')
    def clear_all(self, confirm=None):
        _require_confirmation(confirm)
        deleted = HistoryRecord.query.delete(synchronize_session=False)
        db.session.commit()
        logging.warning(f"Cleared the history store ({deleted} records).")
        return deleted

    # --- Reads ---

    @_persistence('count history records')
    def count_all(self):
        return db.session.query(func.count(HistoryRecord.id)).scalar() or 0

    @_persistence('read store statistics')
    def stats_by_store(self):
        """Returns [(store_name, count)] sorted by count, largest first."""
        store = func.nullif(HistoryRecord.store_name, '')
        rows = db.session.query(store, func.count(HistoryRecord.id)).group_by(store).all()
        stats = [(name or UNCLASSIFIED_STORE, count) for name, count in rows]
        return sorted(stats, key=lambda s: (-s[1], s[0]))

    @_persistence('read years')
    def years_for_store(self, store_name):
        prefixes = _store_filter(db.session.query(func.substr(HistoryRecord.date, 1, 3)), store_name) \
            .distinct().all()
        return sorted({p for (p,) in prefixes if p and len(p) == 3 and p.isdigit()})

    @_persistence('read monthly statistics')
    def monthly_stats(self, store_name, year):
        """Returns [(month, count)] for a store and year prefix, in month order."""
        month = func.substr(HistoryRecord.date, 4, 2)
        query = _prefix_filter(_store_filter(db.session.query(month, func.count(HistoryRecord.id)), store_name), year)
        rows = query.group_by(month).order_by(month).all()
        return [(m, count) for m, count in rows if m]

    @_persistence('read history records')
    def page_records(self, store_name, year=None, month=None, offset=0, limit=100):
        query = _store_filter(HistoryRecord.query, store_name)
        if year:
            query = _prefix_filter(query, year, month)
        return query.order_by(HistoryRecord.date.desc(), HistoryRecord.id.desc()) \
            .offset(offset).limit(limit).all()

    @_persistence('look up purchase history')
    def has_purchase(self, customer_id, related_keys):
        """True when the customer ever bought any item whose normalized ID is in ``related_keys``."""
        if not customer_id or not related_keys:
            return False
        query = db.session.query(HistoryRecord.id).filter(
            HistoryRecord.customer_id == str(customer_id),
            HistoryRecord.item_key.in_(list(related_keys)),
        )
        return db.session.query(query.exists()).scalar()

    @_persistence('look up item history')
    def item_history(self, customer_id, related_keys, limit=50):
        """Previous purchases of the product by this customer, newest first."""
        if not customer_id or not related_keys:
            return []
        return HistoryRecord.query.filter(
            HistoryRecord.customer_id == str(customer_id),
            HistoryRecord.item_key.in_(list(related_keys)),
        ).order_by(HistoryRecord.date.desc(), HistoryRecord.id.desc()).limit(limit).all()

    # --- Backup and restore ---

    @_persistence('export backup')
    def export_backup(self):
        """Serialises history, stores and product groups into a JSON-able dict."""
        return {
            'version': 1,
            'history': [r.to_dict() for r in HistoryRecord.query.order_by(HistoryRecord.id).yield_per(5000)],
            'stores': [s.name for s in StoreRecord.query.order_by(StoreRecord.id).all()],
            'groups': [
                {'group_name': g.group_name, 'items': [{'item_id': i.item_id, 'alias': i.alias} for i in g.items]}
                for g in ProductGroup.query.order_by(ProductGroup.id).all()
            ],
        }

    @_persistence('restore backup')
    def restore_backup(self, payload, confirm=None):
        """Replaces every history record, store and product group with the backup content."""
        _require_confirmation(confirm)
        history = payload.get('history') or []
        stores = payload.get('stores') or []
        groups = payload.get('groups') or []

        HistoryRecord.query.delete(synchronize_session=False)
        ProductGroupItem.query.delete(synchronize_session='fetch')
        ProductGroup.query.delete(synchronize_session='fetch')
        StoreRecord.query.delete(synchronize_session='fetch')

        for name in dict.fromkeys(stores):
            db.session.add(StoreRecord(name=name))
        for group in groups:
            db.session.add(ProductGroup(
                group_name=group['group_name'],
                items=[ProductGroupItem(item_id=i['item_id'], alias=i.get('alias') or '') for i in group.get('items', [])],
            ))
        db.session.bulk_insert_mappings(HistoryRecord, [_to_mapping(r) for r in history])
        db.session.commit()
        logging.warning(f"Restored backup: {len(history)} history records, {len(stores)} stores, {len(groups)} groups.")
        return len(history)

    # --- Store list ---

    def list_stores(self):
        return StoreRecord.query.order_by(StoreRecord.id).all()

    @_persistence('add store')
    def add_store(self, name):
        name = name.strip()
        store = StoreRecord.query.filter_by(name=name).first()
        if store is None:
            store = StoreRecord(name=name)
            db.session.add(store)
            db.session.commit()
        return store

    @_persistence('rename store')
    def rename_store(self, old_name, new_name, rename_history=True):
        """Renames a store record and, by default, the history rows filed under it."""
        store = StoreRecord.query.filter_by(name=old_name).first()
        if store is not None:
            store.name = new_name
        if rename_history:
            HistoryRecord.query.filter(HistoryRecord.store_name == old_name) \
                .update({HistoryRecord.store_name: new_name}, synchronize_session=False)
        db.session.commit()

    @_persistence('delete store')
    def delete_store(self, name):
        """Removes a store from the list; its history records are kept."""
        StoreRecord.query.filter_by(name=name).delete(synchronize_session=False)
        db.session.commit()

    @_persistence('seed default stores')
    def seed_default_stores(self, names):
        if StoreRecord.query.count():
            return 0
        for name in names:
            db.session.add(StoreRecord(name=name))
        db.session.commit()
        return len(names)
