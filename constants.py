"""
Application-wide constants for Campus Marketplace
"""

# Listing enums
CONDITIONS = ['new', 'like-new', 'good', 'fair', 'poor']
TRANSACTION_TYPES = ['sell', 'exchange', 'both']
PRODUCT_STATUSES = ['available', 'sold']
STATUS_AVAILABLE = 'available'
STATUS_SOLD = 'sold'

# Filter sentinel: "no constraint on this field"
FILTER_ALL = 'all'

# Admin identity (backing account for the fixed admin gate)
ADMIN_EMAIL = 'admin@campusmarketplace.internal'
ADMIN_DISPLAY_NAME = 'System Administrator'
ADMIN_SESSION_KEY = 'campus_admin_session'

# Auth tokens issued by the backend gateway
AUTH_TOKEN_MAX_AGE = 60 * 60 * 24 * 7  # 1 week
AUTH_TOKEN_SALT = 'campus-marketplace-auth'

# Input Validation
MIN_PRICE = 0.00
MAX_PRICE = 100000.00
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_IMAGES = 10
MAX_IMAGE_URL_LENGTH = 500
MAX_EMAIL_LENGTH = 120
MAX_NAME_LENGTH = 100
MAX_PHONE_LENGTH = 30
MAX_LOCATION_LENGTH = 100
MAX_CATEGORY_NAME_LENGTH = 100
MIN_PASSWORD_LENGTH = 8

# Rate Limiting (requests per time period)
RATE_LIMIT_LOGIN = "5 per minute"
RATE_LIMIT_REGISTER = "3 per hour"
RATE_LIMIT_ADMIN_LOGIN = "5 per minute"

# Standard categories for a fresh database
DEFAULT_CATEGORIES = [
    {"name": "Books", "icon": "📚", "description": "Textbooks, novels and course readers"},
    {"name": "Electronics", "icon": "💻", "description": "Laptops, calculators, chargers and gadgets"},
    {"name": "Furniture", "icon": "🪑", "description": "Desks, chairs, shelves and lamps"},
    {"name": "Clothing", "icon": "👕", "description": "Apparel, shoes and accessories"},
    {"name": "Sports", "icon": "🚲", "description": "Bikes, gym gear and equipment"},
    {"name": "Other", "icon": "📦", "description": "Everything else"},
]
