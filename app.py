import os
import logging
import math
import re
from datetime import datetime
from dotenv import load_dotenv
load_dotenv()  # Load .env for local dev (hosting uses env vars directly)

from flask import Flask, request, session, jsonify, g
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Import Models
from models import db, Profile

# Import Backend, Admin Session and Catalog
from backend import Backend, BackendError, AuthApiError, get_backend
from admin_auth import (
    admin_sign_in, admin_required, clear_admin_session, is_admin_session,
    check_is_admin, InvalidCredentials, AdminBootstrapFailed,
)
from catalog import FilterCriteria, filter_listings, active_filter_count

# Import Constants
from constants import (
    CONDITIONS, TRANSACTION_TYPES, STATUS_AVAILABLE, STATUS_SOLD,
    ADMIN_EMAIL, AUTH_TOKEN_MAX_AGE,
    MIN_PRICE, MAX_PRICE, MAX_TITLE_LENGTH, MAX_DESCRIPTION_LENGTH,
    MAX_IMAGES, MAX_IMAGE_URL_LENGTH, MAX_EMAIL_LENGTH, MAX_NAME_LENGTH,
    MAX_PHONE_LENGTH, MAX_LOCATION_LENGTH, MAX_CATEGORY_NAME_LENGTH, MIN_PASSWORD_LENGTH,
    RATE_LIMIT_LOGIN, RATE_LIMIT_REGISTER, RATE_LIMIT_ADMIN_LOGIN,
)

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- APP CONFIGURATION ---
app = Flask(__name__)

# SECURITY: This secret key signs the session cookie (which holds the admin
# session) and the backend access tokens. Set SECRET_KEY in the environment.
app.secret_key = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')

# 1. DATABASE CONFIGURATION
db_url = os.environ.get('DATABASE_URL')
if db_url:
    # Fix for SQLAlchemy: hosts hand out 'postgres://', but SQLAlchemy needs 'postgresql://'
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
else:
    # Local fallback
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///marketplace.db'

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# 2. ADMIN GATE
# Both must be set; with either missing every admin login is rejected.
app.config['ADMIN_USERNAME'] = os.environ.get('ADMIN_USERNAME')
app.config['ADMIN_PASSWORD'] = os.environ.get('ADMIN_PASSWORD')
app.config['AUTH_TOKEN_MAX_AGE'] = int(os.environ.get('AUTH_TOKEN_MAX_AGE', AUTH_TOKEN_MAX_AGE))

# Initialize DB, Migrations & Backend gateway
db.init_app(app)
migrate = Migrate(app, db)
Backend(db, app)

# CSRF Protection (clients send the token from /api/csrf-token as X-CSRFToken)
csrf = CSRFProtect(app)

# Rate Limiting
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["2000 per day", "500 per hour"],
    storage_uri="memory://"
)
app.limiter = limiter

# LOGIN MANAGER
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(Profile, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return error_response("Please sign in to continue.", 401)


def error_response(message, status):
    return jsonify({'success': False, 'message': message}), status


def request_data():
    """JSON body if present, otherwise form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def text_field(data, name):
    """Field as a string; JSON numbers and booleans arrive as non-strings."""
    value = data.get(name)
    return '' if value is None else str(value)


# --- VALIDATION HELPERS ---

def validate_email(email):
    """Validate email format"""
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def validate_password(password):
    """
    Sign-up password rules: at least 8 characters, one capital letter, one number.
    Returns (True, None) or (False, error_message).
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not re.search(r'[A-Z]', password):
        return False, "Password must contain at least 1 capital letter"
    if not re.search(r'[0-9]', password):
        return False, "Password must contain at least 1 number"
    return True, None


def validate_contact(data, partial=False):
    """
    Profile name and contact details shown to buyers.
    Returns (True, values) or (False, error_message).
    """
    values = {}
    limits = (
        ('full_name', MAX_NAME_LENGTH, "Name"),
        ('phone', MAX_PHONE_LENGTH, "Phone number"),
        ('location', MAX_LOCATION_LENGTH, "Location"),
    )
    for name, limit, label in limits:
        if partial and name not in data:
            continue
        value = text_field(data, name).strip()
        if len(value) > limit:
            return False, f"{label} is too long (max {limit} characters)."
        values[name] = value or None
    return True, values


def validate_price(price):
    """Validate price is within acceptable range"""
    if isinstance(price, bool):
        return False, "Invalid price format"
    try:
        price_float = float(price)
    except (ValueError, TypeError):
        return False, "Invalid price format"
    if not math.isfinite(price_float) or price_float < MIN_PRICE or price_float > MAX_PRICE:
        return False, f"Price must be between ${MIN_PRICE:.2f} and ${MAX_PRICE:.2f}"
    return True, round(price_float, 2)


def validate_choice(value, choices, label):
    if value not in choices:
        return False, f"{label} must be one of: {', '.join(choices)}"
    return True, value


def validate_image_urls(images):
    """Images are pasted http(s) URLs; returns (True, cleaned_list) or (False, error_message)."""
    if images is None:
        return True, []
    if isinstance(images, str):
        images = images.splitlines()
    if not isinstance(images, list):
        return False, "Images must be a list of URLs"
    cleaned = [str(url).strip() for url in images if str(url).strip()]
    if len(cleaned) > MAX_IMAGES:
        return False, f"At most {MAX_IMAGES} images are allowed"
    for url in cleaned:
        if len(url) > MAX_IMAGE_URL_LENGTH or not re.match(r'^https?://\S+$', url):
            return False, f"Invalid image URL: {url[:60]}"
    return True, cleaned


def validate_category_id(category_id):
    """Optional category reference; must point at an existing category."""
    if category_id in (None, '', 'none'):
        return True, None
    try:
        category_id = int(category_id)
    except (ValueError, TypeError):
        return False, "Invalid category"
    if not get_backend().table('categories').count(id=category_id):
        return False, "Category not found"
    return True, category_id


def validate_product_payload(data, partial=False):
    """
    Validate a create/edit payload.
    Returns (True, values) with only the writable columns, or (False, error_message).
    With partial=True only the fields present in `data` are checked.
    """
    values = {}

    if not partial or 'title' in data:
        title = text_field(data, 'title').strip()
        if not title:
            return False, "Title is required"
        if len(title) > MAX_TITLE_LENGTH:
            return False, f"Title is too long (max {MAX_TITLE_LENGTH} characters)"
        values['title'] = title

    if not partial or 'description' in data:
        description = text_field(data, 'description').strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            return False, f"Description is too long (max {MAX_DESCRIPTION_LENGTH} characters)"
        values['description'] = description or None

    if not partial or 'price' in data:
        ok, result = validate_price(data.get('price'))
        if not ok:
            return False, result
        values['price'] = result

    if not partial or 'condition' in data:
        ok, result = validate_choice(data.get('condition'), CONDITIONS, "Condition")
        if not ok:
            return False, result
        values['condition'] = result

    if not partial or 'transaction_type' in data:
        ok, result = validate_choice(data.get('transaction_type', 'sell'), TRANSACTION_TYPES, "Transaction type")
        if not ok:
            return False, result
        values['transaction_type'] = result

    if not partial or 'images' in data:
        ok, result = validate_image_urls(data.get('images'))
        if not ok:
            return False, result
        values['images'] = result

    if not partial or 'category_id' in data:
        ok, result = validate_category_id(data.get('category_id'))
        if not ok:
            return False, result
        values['category_id'] = result

    return True, values


def get_owned_product(product_id):
    """(product, None) for the current user's product, else (None, error response)."""
    product = get_backend().table('products').single(id=product_id)
    if not product:
        return None, error_response("Product not found.", 404)
    if product['seller_id'] != current_user.id:
        logger.warning(f"User {current_user.id} tried to modify product {product_id} they don't own")
        return None, error_response("Unauthorized", 403)
    return product, None


# --- ERROR HANDLERS ---

@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 error: {request.url}")
    return error_response("Not found", 404)


@app.errorhandler(405)
def method_not_allowed(error):
    return error_response("Method not allowed", 405)


@app.errorhandler(429)
def rate_limited(error):
    logger.warning(f"429 error: {request.path} from {get_remote_address()}")
    return error_response("Too many requests. Please slow down and try again.", 429)


@app.errorhandler(CSRFError)
def csrf_error(error):
    return error_response(error.description, 400)


@app.errorhandler(BackendError)
def backenderror(error):
    db.session.rollback()
    if error.code == 'conflict':
        return error_response("That change conflicts with existing data.", 400)
    logger.error(f"Backend error on {request.path}: {error.message}")
    return error_response("The marketplace is temporarily unavailable. Please try again later.", 503)


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 error: {error}", exc_info=True)
    db.session.rollback()
    return error_response("An internal error occurred. Please try again later.", 500)


# =========================================================
# SECTION 1: PUBLIC ROUTES
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint for monitoring and load balancers"""
    try:
        get_backend().ping()
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.utcnow().isoformat()
        }), 200
    except BackendError as e:
        logger.error(f"Health check failed: {e.message}")
        return jsonify({
            'status': 'unhealthy',
            'error': e.message,
            'timestamp': datetime.utcnow().isoformat()
        }), 503


@app.route('/api/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@app.route('/api/categories')
def list_categories():
    categories = get_backend().table('categories').select(order_by='name')
    return jsonify({'categories': categories})


@app.route('/api/products')
def list_products():
    """Available listings, newest first, narrowed by search/category/condition/type."""
    criteria = FilterCriteria.from_args(request.args)
    listings = get_backend().table('products').select(
        order_by='created_at', desc=True, status=STATUS_AVAILABLE)
    visible = filter_listings(listings, criteria)
    return jsonify({
        'products': visible,
        'count': len(visible),
        'filters': criteria.to_dict(),
        'active_filters': active_filter_count(criteria),
    })


@app.route('/api/products/<int:product_id>')
def product_detail(product_id):
    product = get_backend().table('products').single(id=product_id)
    if not product:
        return error_response("Product not found.", 404)
    product['is_favorite'] = False
    product['is_owner'] = False
    if current_user.is_authenticated:
        product['is_owner'] = product['seller_id'] == current_user.id
        product['is_favorite'] = bool(get_backend().table('favorites').match(
            {'user_id': current_user.id, 'product_id': product_id}))
    return jsonify({'product': product})


@app.route('/api/products/<int:product_id>/view', methods=['POST'])
def record_view(product_id):
    """Best-effort view counter; failures never reach the viewer."""
    try:
        get_backend().rpc('increment_views', product_id=product_id)
    except BackendError as e:
        logger.warning(f"Failed to record view for product {product_id}: {e.message}")
    return jsonify({'success': True}), 202


# =========================================================
# SECTION 2: AUTH ROUTES
# =========================================================

@app.route('/api/auth/signup', methods=['POST'])
@limiter.limit(RATE_LIMIT_REGISTER)
def signup():
    data = request_data()
    email = text_field(data, 'email').strip()
    password = text_field(data, 'password')

    if not validate_email(email):
        return error_response("Please provide a valid email address.", 400)
    # The admin identity is only ever created by the admin portal login
    if email.lower() == ADMIN_EMAIL:
        logger.warning("Sign-up attempted with the reserved admin email")
        return error_response("This email address is reserved.", 400)
    ok, message = validate_password(password)
    if not ok:
        return error_response(message, 400)
    ok, profile = validate_contact(data)
    if not ok:
        return error_response(profile, 400)

    try:
        auth = get_backend().sign_up(email, password, profile)
    except AuthApiError:
        return error_response("An account with this email already exists. Please sign in.", 400)

    login_user(db.session.get(Profile, auth.user['id']))
    logger.info(f"New user registered: {auth.user['email']}")
    return jsonify({'success': True, 'user': auth.user, 'access_token': auth.access_token}), 201


@app.route('/api/auth/signin', methods=['POST'])
@limiter.limit(RATE_LIMIT_LOGIN)
def signin():
    data = request_data()
    email = text_field(data, 'email').strip()
    password = text_field(data, 'password')

    if not validate_email(email):
        return error_response("Please provide a valid email address.", 400)
    if not password:
        return error_response("Please enter your password.", 400)

    try:
        auth = get_backend().sign_in_with_password(email, password)
    except AuthApiError:
        return error_response("Invalid email or password.", 401)

    login_user(db.session.get(Profile, auth.user['id']))
    return jsonify({'success': True, 'user': auth.user, 'access_token': auth.access_token})


@app.route('/api/auth/signout', methods=['POST'])
def signout():
    clear_admin_session(session)
    logout_user()
    return jsonify({'success': True})


@app.route('/api/auth/me')
@login_required
def me():
    user = current_user.to_dict()
    user['is_admin'] = check_is_admin(get_backend(), current_user.id)
    user['admin_session'] = is_admin_session(session)
    return jsonify({'user': user})


@app.route('/api/auth/me', methods=['PATCH'])
@login_required
def update_profile():
    """Update name, phone and location; fields left out are unchanged."""
    ok, result = validate_contact(request_data(), partial=True)
    if not ok:
        return error_response(result, 400)
    if not result:
        return jsonify({'success': True, 'user': current_user.to_dict()})
    user = get_backend().table('profiles').update(result, id=current_user.id)[0]
    return jsonify({'success': True, 'message': "Profile updated successfully!", 'user': user})


# =========================================================
# SECTION 3: SELLER ROUTES
# =========================================================

@app.route('/api/products', methods=['POST'])
@login_required
def create_product():
    ok, result = validate_product_payload(request_data())
    if not ok:
        return error_response(result, 400)
    result['seller_id'] = current_user.id
    result['status'] = STATUS_AVAILABLE
    product = get_backend().table('products').insert(result)[0]
    logger.info(f"Product {product['id']} listed by user {current_user.id}")
    return jsonify({'success': True, 'message': "Product listed successfully!", 'product': product}), 201


@app.route('/api/products/<int:product_id>', methods=['PUT', 'PATCH'])
@login_required
def edit_product(product_id):
    product, error = get_owned_product(product_id)
    if error:
        return error
    ok, result = validate_product_payload(request_data(), partial=request.method == 'PATCH')
    if not ok:
        return error_response(result, 400)
    if not result:
        return jsonify({'success': True, 'product': product})
    updated = get_backend().table('products').update(result, id=product_id)[0]
    return jsonify({'success': True, 'message': "Product updated successfully!", 'product': updated})


@app.route('/api/products/<int:product_id>/status', methods=['POST'])
@login_required
def toggle_product_status(product_id):
    product, error = get_owned_product(product_id)
    if error:
        return error
    new_status = STATUS_SOLD if product['status'] == STATUS_AVAILABLE else STATUS_AVAILABLE
    updated = get_backend().table('products').update({'status': new_status}, id=product_id)[0]
    return jsonify({'success': True, 'message': f"Listing marked as {new_status}", 'product': updated})


@app.route('/api/products/<int:product_id>', methods=['DELETE'])
@login_required
def delete_product(product_id):
    product, error = get_owned_product(product_id)
    if error:
        return error
    get_backend().table('products').delete(id=product_id)
    logger.info(f"Product {product_id} deleted by seller {current_user.id}")
    return jsonify({'success': True, 'message': "Listing deleted successfully"})


@app.route('/api/my-products')
@login_required
def my_products():
    products = get_backend().table('products').select(
        order_by='created_at', desc=True, seller_id=current_user.id)
    return jsonify({'products': products, 'count': len(products)})


# =========================================================
# SECTION 4: FAVORITES
# =========================================================

@app.route('/api/favorites')
@login_required
def favorites():
    rows = get_backend().table('favorites').select(
        order_by='created_at', desc=True, user_id=current_user.id)
    products = [row['product'] for row in rows if row['product']]
    return jsonify({'products': products, 'count': len(products)})


@app.route('/api/products/<int:product_id>/favorite', methods=['POST'])
@login_required
def toggle_favorite(product_id):
    """Add or remove a favorite; at most one per user and product."""
    backend = get_backend()
    if not backend.table('products').count(id=product_id):
        return error_response("Product not found.", 404)
    key = {'user_id': current_user.id, 'product_id': product_id}
    favorites_table = backend.table('favorites')
    if favorites_table.match(key):
        favorites_table.delete(**key)
        return jsonify({'success': True, 'is_favorite': False, 'message': "Removed from favorites"})
    favorites_table.insert(key)
    return jsonify({'success': True, 'is_favorite': True, 'message': "Added to favorites"})


# =========================================================
# SECTION 5: ADMIN ROUTES
# =========================================================

@app.route('/api/admin/login', methods=['POST'])
@limiter.limit(RATE_LIMIT_ADMIN_LOGIN)
def admin_login():
    data = request_data()
    try:
        admin = admin_sign_in(
            get_backend(), session,
            text_field(data, 'username'), text_field(data, 'password'),
            app.config.get('ADMIN_USERNAME'), app.config.get('ADMIN_PASSWORD'),
        )
    except InvalidCredentials as e:
        return error_response(str(e), 401)
    except AdminBootstrapFailed as e:
        return error_response(e.message, 503)

    login_user(db.session.get(Profile, admin.user_id))
    return jsonify({'success': True, 'message': "Admin logged in successfully!", 'admin': {
        'user_id': admin.user_id, 'email': admin.email}})


@app.route('/api/admin/logout', methods=['POST'])
def admin_logout():
    clear_admin_session(session)
    logout_user()
    return jsonify({'success': True, 'message': "Admin logged out successfully"})


@app.route('/api/admin/stats')
@admin_required
def admin_stats():
    backend = get_backend()
    products = backend.table('products')
    return jsonify({
        'total_users': backend.table('profiles').count(),
        'total_products': products.count(),
        'total_categories': backend.table('categories').count(),
        'total_favorites': backend.table('favorites').count(),
        'available_products': products.count(status=STATUS_AVAILABLE),
        'sold_products': products.count(status=STATUS_SOLD),
    })


@app.route('/api/admin/users')
@admin_required
def admin_users():
    backend = get_backend()
    users = backend.table('profiles').select(order_by='created_at', desc=True)
    counts = {}
    for product in backend.table('products').select():
        counts[product['seller_id']] = counts.get(product['seller_id'], 0) + 1
    for user in users:
        user['product_count'] = counts.get(user['id'], 0)
    return jsonify({'users': users})


@app.route('/api/admin/users/<int:user_id>', methods=['DELETE'])
@admin_required
def admin_delete_user(user_id):
    """Delete a user account with their favorites and listings."""
    if user_id == g.admin_session.user_id:
        return error_response("The admin account cannot be deleted.", 400)
    backend = get_backend()
    profile = backend.table('profiles').single(id=user_id)
    if not profile:
        return error_response("User not found.", 404)
    backend.table('favorites').delete(user_id=user_id)
    backend.table('products').delete(seller_id=user_id)
    backend.table('profiles').delete(id=user_id)
    logger.info(f"Admin deleted user {profile['email']}")
    return jsonify({'success': True, 'message': f"User {profile['email']} deleted successfully"})


@app.route('/api/admin/products')
@admin_required
def admin_products():
    products = get_backend().table('products').select(order_by='created_at', desc=True)
    return jsonify({'products': products, 'count': len(products)})


@app.route('/api/admin/products/<int:product_id>', methods=['DELETE'])
@admin_required
def admin_delete_product(product_id):
    if not get_backend().table('products').delete(id=product_id):
        return error_response("Product not found.", 404)
    logger.info(f"Admin deleted product {product_id}")
    return jsonify({'success': True, 'message': "Product deleted successfully"})


@app.route('/api/admin/categories')
@admin_required
def admin_categories():
    """Categories by name, each with the number of products using it."""
    backend = get_backend()
    categories = backend.table('categories').select(order_by='name')
    counts = {}
    for product in backend.table('products').select():
        if product['category_id']:
            counts[product['category_id']] = counts.get(product['category_id'], 0) + 1
    for category in categories:
        category['product_count'] = counts.get(category['id'], 0)
    return jsonify({'categories': categories})


def _category_values(data):
    name = text_field(data, 'name').strip()
    if not name:
        return False, "Category name is required."
    if len(name) > MAX_CATEGORY_NAME_LENGTH:
        return False, f"Category name is too long (max {MAX_CATEGORY_NAME_LENGTH} characters)."
    return True, {
        'name': name,
        'description': text_field(data, 'description').strip() or None,
        'icon': text_field(data, 'icon').strip() or None,
    }


@app.route('/api/admin/categories', methods=['POST'])
@admin_required
def admin_add_category():
    ok, values = _category_values(request_data())
    if not ok:
        return error_response(values, 400)
    categories = get_backend().table('categories')
    if categories.single(name=values['name']):
        return error_response(f"Category '{values['name']}' already exists.", 400)
    category = categories.insert(values)[0]
    return jsonify({'success': True, 'message': "Category created successfully", 'category': category}), 201


@app.route('/api/admin/categories/<int:cat_id>', methods=['PUT'])
@admin_required
def admin_edit_category(cat_id):
    categories = get_backend().table('categories')
    if not categories.single(id=cat_id):
        return error_response("Category not found.", 404)
    ok, values = _category_values(request_data())
    if not ok:
        return error_response(values, 400)
    existing = categories.single(name=values['name'])
    if existing and existing['id'] != cat_id:
        return error_response(f"Category '{values['name']}' already exists.", 400)
    category = categories.update(values, id=cat_id)[0]
    return jsonify({'success': True, 'message': "Category updated successfully", 'category': category})


@app.route('/api/admin/categories/<int:cat_id>', methods=['DELETE'])
@admin_required
def admin_delete_category(cat_id):
    """Delete a category (only if no products use it)"""
    backend = get_backend()
    category = backend.table('categories').single(id=cat_id)
    if not category:
        return error_response("Category not found.", 404)
    product_count = backend.table('products').count(category_id=cat_id)
    if product_count > 0:
        return error_response(
            f"Cannot delete category '{category['name']}' - it has {product_count} product(s). "
            "Please reassign or delete them first.", 400)
    backend.table('categories').delete(id=cat_id)
    return jsonify({'success': True, 'message': f"Category '{category['name']}' deleted successfully"})


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1')
