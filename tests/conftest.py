"""
Pytest configuration and fixtures for Campus Marketplace tests.

Fixtures are reusable test data/objects that tests can use.
Think of them as "test helpers" that set up common scenarios.
"""
import pytest
import os

# The engine is built when app.py is imported, so point it at an
# in-memory SQLite database before that happens.
os.environ["DATABASE_URL"] = "sqlite://"

from app import app, db
from models import Profile, Category, Product
from werkzeug.security import generate_password_hash

ADMIN_USERNAME = 'campus-admin'
ADMIN_PASSWORD = 'Adm1n-Secret-Pass'


@pytest.fixture(scope='function')
def client():
    """
    Create a test client for the application.

    This fixture:
    - Uses an in-memory SQLite database
    - Sets up test configuration (CSRF off, admin credentials set)
    - Disables rate limiting
    - Creates all database tables
    - Yields a test client you can use to make requests
    - Cleans up after the test
    """
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False  # Disable CSRF for easier testing
    app.config['SECRET_KEY'] = 'test-secret-key'
    app.config['ADMIN_USERNAME'] = ADMIN_USERNAME
    app.config['ADMIN_PASSWORD'] = ADMIN_PASSWORD

    # Limits are registered at import time; switch the limiter off instead
    app.limiter.enabled = False

    with app.test_client() as client:
        with app.app_context():
            db.create_all()
            yield client
            db.session.remove()
            db.drop_all()


@pytest.fixture
def test_user(client):
    """
    Create a regular user in the database.
    Email: test@example.com
    Password: Testpass123
    Contact: 555-0100, North Hall
    """
    with app.app_context():
        user = Profile(
            email='test@example.com',
            password_hash=generate_password_hash('Testpass123'),
            full_name='Test User',
            phone='555-0100',
            location='North Hall'
        )
        db.session.add(user)
        db.session.commit()
        # Access attributes to ensure they're loaded before session closes
        _ = user.id, user.email, user.full_name, user.is_admin
        return user


@pytest.fixture
def other_user(client):
    """A second user, for ownership checks."""
    with app.app_context():
        user = Profile(
            email='other@example.com',
            password_hash=generate_password_hash('Otherpass123'),
            full_name='Other User'
        )
        db.session.add(user)
        db.session.commit()
        _ = user.id, user.email
        return user


@pytest.fixture
def test_category(client):
    """Create a category in the database."""
    with app.app_context():
        category = Category(name='Books', icon='📚', description='Textbooks')
        db.session.add(category)
        db.session.commit()
        _ = category.id, category.name
        return category


@pytest.fixture
def test_product(client, test_user, test_category):
    """
    Create an available product in the database.
    Requires: test_user and test_category fixtures
    """
    with app.app_context():
        product = Product(
            title='Calculus Book',
            description='Stewart, 8th edition',
            price=25.00,
            condition='good',
            transaction_type='sell',
            images=['https://example.com/calculus.jpg'],
            status='available',
            category_id=test_category.id,
            seller_id=test_user.id,
        )
        db.session.add(product)
        db.session.commit()
        _ = product.id, product.title, product.seller_id, product.category_id
        return product


def _login_session(client, user_id):
    # Set session using session_transaction (creates request context)
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user_id)
        sess['_fresh'] = True


@pytest.fixture
def authenticated_client(client, test_user):
    """
    Create an authenticated test client.

    This simulates a logged-in user session.
    Use this when testing routes that require login.
    """
    _login_session(client, test_user.id)
    return client


@pytest.fixture
def admin_client(client):
    """
    Create a test client signed in through the admin portal.

    Goes through the real admin login, so the backing admin identity
    is provisioned in the test database.
    """
    response = client.post('/api/admin/login', json={
        'username': ADMIN_USERNAME,
        'password': ADMIN_PASSWORD,
    })
    assert response.status_code == 200, response.get_json()
    return client
