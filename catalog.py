"""
Catalog filtering for the product listing page.

Listings are fetched once (available only, newest first) and narrowed in
memory; nothing in here talks to the database.
"""
from collections.abc import Mapping

from constants import FILTER_ALL

# criteria.transaction_type values that also accept 'both' listings
_BOTH_MATCHES = ('sell', 'exchange')


class FilterCriteria:
    """Search term plus category / condition / transaction type selections."""

    def __init__(self, search='', category=FILTER_ALL, condition=FILTER_ALL, transaction_type=FILTER_ALL):
        self.search = search or ''
        self.category = _selection(category)
        self.condition = _selection(condition)
        self.transaction_type = _selection(transaction_type)

    @classmethod
    def from_args(cls, args):
        """Build criteria from query-string style args (search, category, condition, type)."""
        return cls(
            search=args.get('search') or '',
            category=args.get('category'),
            condition=args.get('condition'),
            transaction_type=args.get('type') or args.get('transaction_type'),
        )

    @classmethod
    def cleared(cls):
        return cls()

    @property
    def is_filtered(self):
        return bool(self.search) or active_filter_count(self) > 0

    def to_dict(self):
        return {
            'search': self.search,
            'category': self.category,
            'condition': self.condition,
            'type': self.transaction_type,
        }

    def __eq__(self, other):
        return isinstance(other, FilterCriteria) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<FilterCriteria {self.to_dict()!r}>"


def _selection(value):
    if value is None:
        return FILTER_ALL
    value = str(value).strip()
    return value or FILTER_ALL


def _field(listing, name):
    if isinstance(listing, Mapping):
        return listing.get(name)
    return getattr(listing, name, None)


def _category_id(listing):
    category = _field(listing, 'category')
    if category is not None:
        category_id = _field(category, 'id')
    else:
        category_id = _field(listing, 'category_id')
    return None if category_id is None else str(category_id)


def matches_search(listing, term):
    title = _field(listing, 'title')
    return (term or '').lower() in (str(title) if title is not None else '').lower()


def matches_category(listing, category):
    return category == FILTER_ALL or _category_id(listing) == str(category)


def matches_condition(listing, condition):
    return condition == FILTER_ALL or _field(listing, 'condition') == condition


def matches_transaction_type(listing, transaction_type):
    listing_type = _field(listing, 'transaction_type')
    if transaction_type == FILTER_ALL or listing_type == transaction_type:
        return True
    return transaction_type in _BOTH_MATCHES and listing_type == 'both'


def matches(listing, criteria):
    return (
        matches_search(listing, criteria.search)
        and matches_category(listing, criteria.category)
        and matches_condition(listing, criteria.condition)
        and matches_transaction_type(listing, criteria.transaction_type)
    )


def filter_listings(listings, criteria):
    """Listings that satisfy every criterion, in their original order."""
    return [listing for listing in (listings or []) if matches(listing, criteria)]


def active_filter_count(criteria):
    """Number of dropdown selections not set to 'all'; the search box is not counted."""
    return sum(
        1 for value in (criteria.category, criteria.condition, criteria.transaction_type)
        if value != FILTER_ALL
    )
