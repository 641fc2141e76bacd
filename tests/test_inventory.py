"""
Integration tests for the catalog routes.

These test browsing, searching, filtering and viewing products.
Run: pytest tests/test_inventory.py -v
"""
import pytest
from datetime import datetime, timedelta
from app import db
from models import Product, Category


@pytest.fixture
def catalog(client, test_user, test_category):
    """
    Four products: three available (oldest first) and one sold.

    Calculus Book (sell, good, Books), Bike (exchange, new),
    Desk Lamp (both, fair), Sold Chair (sell, poor, sold).
    """
    with client.application.app_context():
        sports = Category(name='Sports')
        db.session.add(sports)
        db.session.commit()
        now = datetime.utcnow()
        rows = [
            Product(title='Calculus Book', price=25, condition='good', transaction_type='sell',
                    category_id=test_category.id, seller_id=test_user.id,
                    created_at=now - timedelta(hours=3)),
            Product(title='Bike', price=80, condition='new', transaction_type='exchange',
                    category_id=sports.id, seller_id=test_user.id,
                    created_at=now - timedelta(hours=2)),
            Product(title='Desk Lamp', price=10, condition='fair', transaction_type='both',
                    seller_id=test_user.id, created_at=now - timedelta(hours=1)),
            Product(title='Sold Chair', price=15, condition='poor', transaction_type='sell',
                    status='sold', seller_id=test_user.id, created_at=now),
        ]
        db.session.add_all(rows)
        db.session.commit()
        return {'books_id': test_category.id, 'sports_id': sports.id, 'ids': [p.id for p in rows]}


def titles(response):
    return [p['title'] for p in response.get_json()['products']]


@pytest.mark.integration
class TestProductListing:
    """Test the catalog listing endpoint"""

    def test_lists_available_newest_first(self, client, catalog):
        response = client.get('/api/products')
        assert response.status_code == 200
        assert titles(response) == ['Desk Lamp', 'Bike', 'Calculus Book']
        assert response.get_json()['count'] == 3

    def test_sold_products_are_hidden(self, client, catalog):
        assert 'Sold Chair' not in titles(client.get('/api/products'))
        assert titles(client.get('/api/products?search=chair')) == []

    def test_search_is_case_insensitive(self, client, catalog):
        assert titles(client.get('/api/products?search=CAL')) == ['Calculus Book']

    def test_search_no_results(self, client, catalog):
        response = client.get('/api/products?search=nonexistentitem12345xyz')
        assert response.status_code == 200
        assert response.get_json()['count'] == 0

    def test_whitespace_search_is_not_ignored(self, client, catalog):
        response = client.get('/api/products?search=%20%20')
        assert response.status_code == 200
        assert response.get_json()['count'] == 0
        assert response.get_json()['filters']['search'] == '  '

    def test_category_filter(self, client, catalog):
        response = client.get(f"/api/products?category={catalog['sports_id']}")
        assert titles(response) == ['Bike']
        assert response.get_json()['active_filters'] == 1

    def test_condition_filter(self, client, catalog):
        assert titles(client.get('/api/products?condition=good')) == ['Calculus Book']

    def test_exchange_includes_both(self, client, catalog):
        assert titles(client.get('/api/products?type=exchange')) == ['Desk Lamp', 'Bike']

    def test_sell_includes_both(self, client, catalog):
        assert titles(client.get('/api/products?type=sell')) == ['Desk Lamp', 'Calculus Book']

    def test_combined_filters(self, client, catalog):
        response = client.get(
            f"/api/products?search=book&category={catalog['books_id']}&condition=good&type=sell")
        assert titles(response) == ['Calculus Book']
        data = response.get_json()
        assert data['active_filters'] == 3
        assert data['filters'] == {
            'search': 'book', 'category': str(catalog['books_id']), 'condition': 'good', 'type': 'sell'}

    def test_all_means_no_filter(self, client, catalog):
        response = client.get('/api/products?category=all&condition=all&type=all')
        assert len(titles(response)) == 3
        assert response.get_json()['active_filters'] == 0

    def test_embeds_category(self, client, catalog):
        products = client.get('/api/products').get_json()['products']
        bike = next(p for p in products if p['title'] == 'Bike')
        assert bike['category']['name'] == 'Sports'
        lamp = next(p for p in products if p['title'] == 'Desk Lamp')
        assert lamp['category'] is None


@pytest.mark.integration
class TestProductDetail:
    """Test the product detail and view counter"""

    def test_product_detail(self, client, test_product):
        response = client.get(f'/api/products/{test_product.id}')
        assert response.status_code == 200
        product = response.get_json()['product']
        assert product['title'] == 'Calculus Book'
        assert product['seller']['full_name'] == 'Test User'
        assert product['is_favorite'] is False
        assert product['is_owner'] is False

    def test_detail_includes_seller_contact(self, client, test_product):
        seller = client.get(f'/api/products/{test_product.id}').get_json()['product']['seller']
        assert seller['phone'] == '555-0100'
        assert seller['location'] == 'North Hall'
        assert 'email' not in seller

    def test_owner_flag(self, authenticated_client, test_product):
        product = authenticated_client.get(f'/api/products/{test_product.id}').get_json()['product']
        assert product['is_owner'] is True

    def test_missing_product(self, client):
        assert client.get('/api/products/9999').status_code == 404

    def test_record_view(self, client, test_product):
        for _ in range(3):
            assert client.post(f'/api/products/{test_product.id}/view').status_code == 202
        product = client.get(f'/api/products/{test_product.id}').get_json()['product']
        assert product['views'] == 3

    def test_record_view_survives_backend_failure(self, client, test_product, monkeypatch):
        from backend import Backend, BackendError

        def unreachable(self, name, **params):
            raise BackendError("could not connect to server", code='unavailable')

        monkeypatch.setattr(Backend, 'rpc', unreachable)
        assert client.post(f'/api/products/{test_product.id}/view').status_code == 202

    def test_backend_outage_on_listing_returns_503(self, client, monkeypatch):
        from backend import Table, BackendError

        def unreachable(self, *args, **kwargs):
            raise BackendError("could not connect to server", code='unavailable')

        monkeypatch.setattr(Table, 'select', unreachable)
        response = client.get('/api/products')
        assert response.status_code == 503
        assert response.get_json()['success'] is False
