"""
Integration tests for favorites.

Run: pytest tests/test_favorites.py -v
"""
import pytest
from models import Favorite


@pytest.mark.integration
class TestFavorites:

    def test_requires_login(self, client, test_product):
        assert client.post(f'/api/products/{test_product.id}/favorite').status_code == 401
        assert client.get('/api/favorites').status_code == 401

    def test_toggle_on_and_off(self, authenticated_client, test_product):
        url = f'/api/products/{test_product.id}/favorite'

        response = authenticated_client.post(url)
        assert response.status_code == 200
        assert response.get_json()['is_favorite'] is True
        detail = authenticated_client.get(f'/api/products/{test_product.id}').get_json()['product']
        assert detail['is_favorite'] is True

        response = authenticated_client.post(url)
        assert response.get_json()['is_favorite'] is False
        detail = authenticated_client.get(f'/api/products/{test_product.id}').get_json()['product']
        assert detail['is_favorite'] is False

    def test_at_most_one_favorite_per_product(self, authenticated_client, test_product):
        url = f'/api/products/{test_product.id}/favorite'
        for _ in range(3):
            authenticated_client.post(url)
        with authenticated_client.application.app_context():
            assert Favorite.query.count() == 1

    def test_favorites_list(self, authenticated_client, test_product):
        authenticated_client.post(f'/api/products/{test_product.id}/favorite')
        response = authenticated_client.get('/api/favorites')
        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == 1
        assert data['products'][0]['title'] == 'Calculus Book'

    def test_favorite_missing_product(self, authenticated_client):
        assert authenticated_client.post('/api/products/9999/favorite').status_code == 404

    def test_deleting_product_removes_it_from_favorites(self, authenticated_client, test_product):
        authenticated_client.post(f'/api/products/{test_product.id}/favorite')
        authenticated_client.delete(f'/api/products/{test_product.id}')
        assert authenticated_client.get('/api/favorites').get_json()['count'] == 0
