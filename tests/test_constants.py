"""
Unit tests for constants.

These verify that constants are set correctly.
Run: pytest tests/test_constants.py -v
"""
import pytest
from constants import (
    CONDITIONS, TRANSACTION_TYPES, PRODUCT_STATUSES, FILTER_ALL,
    ADMIN_EMAIL, ADMIN_SESSION_KEY, MIN_PRICE, MAX_PRICE,
    MIN_PASSWORD_LENGTH, DEFAULT_CATEGORIES,
)


@pytest.mark.unit
class TestConstants:
    """Test that constants are set correctly"""

    def test_conditions(self):
        """Condition dropdown values, best to worst"""
        assert CONDITIONS == ['new', 'like-new', 'good', 'fair', 'poor']

    def test_transaction_types(self):
        assert set(TRANSACTION_TYPES) == {'sell', 'exchange', 'both'}

    def test_statuses(self):
        assert set(PRODUCT_STATUSES) == {'available', 'sold'}

    def test_filter_sentinel_is_not_a_real_value(self):
        """'all' must never collide with a condition or transaction type"""
        assert FILTER_ALL not in CONDITIONS
        assert FILTER_ALL not in TRANSACTION_TYPES

    def test_admin_identity(self):
        assert ADMIN_EMAIL == 'admin@campusmarketplace.internal'
        assert ADMIN_SESSION_KEY == 'campus_admin_session'

    def test_price_range(self):
        """Prices are non-negative"""
        assert MIN_PRICE == 0
        assert MAX_PRICE > MIN_PRICE

    def test_password_length(self):
        assert MIN_PASSWORD_LENGTH == 8

    def test_default_categories_unique(self):
        names = [c['name'] for c in DEFAULT_CATEGORIES]
        assert len(names) == len(set(names))
