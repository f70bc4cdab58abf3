# ==============================================================================
# storebonus/calculator/resolver.py
# ------------------------------------------------------------------------------
# Decides whether a sales line is a repeat purchase of the same product,
# looking at durable history and at the lines already classified in the
# current run.
# ==============================================================================

import logging

from .grouping import normalize_item_id


class RepurchaseResolver:
    """
    One resolver serves one classification run. Call ``reset()`` before
    classifying a new batch so rows from the previous batch are forgotten.
    """

    def __init__(self, history, index):
        self.history = history
        self.index = index
        self._batch = {}
        self._durable_cache = {}

    def reset(self):
        self._batch = {}
        self._durable_cache = {}

    @staticmethod
    def _receipt(ticket_no, full_date):
        # Lines of one receipt share the ticket; without a ticket the full date stands in.
        return str(ticket_no or full_date or '').strip()

    def register(self, customer_id, item_id, ticket_no='', full_date=''):
        """Makes a classified row visible to later lookups in this batch."""
        customer = str(customer_id or '').strip()
        key = normalize_item_id(item_id)
        if not customer or not key:
            return
        receipts = self._batch.setdefault(customer, {}).setdefault(key, set())
        receipts.add(self._receipt(ticket_no, full_date))

    def _in_batch(self, customer, related, receipt):
        purchases = self._batch.get(customer)
        if not purchases:
            return False
        for key in related:
            if purchases.get(key, set()) - {receipt}:
                return True
        return False

    def _in_history(self, customer, related):
        cache_key = (customer, related)
        if cache_key not in self._durable_cache:
            self._durable_cache[cache_key] = bool(self.history.has_purchase(customer, related))
        return self._durable_cache[cache_key]

    def is_repurchase(self, customer_id, item_id, ticket_no='', full_date=''):
        customer = str(customer_id or '').strip()
        if not customer or not normalize_item_id(item_id):
            return False
        related = self.index.lookup(item_id).related_ids
        receipt = self._receipt(ticket_no, full_date)

        if self._in_batch(customer, related, receipt):
            logging.debug(f"Repurchase (same batch): customer {customer}, item {item_id}")
            return True
        if self._in_history(customer, related):
            logging.debug(f"Repurchase (history): customer {customer}, item {item_id}")
            return True
        return False
