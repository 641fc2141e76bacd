from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class Profile(UserMixin, db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(100), nullable=True)

    # CONTACT: shown to buyers on the product page
    phone = db.Column(db.String(30), nullable=True)
    location = db.Column(db.String(100), nullable=True)

    # ADMIN: marker read by check_is_admin; set for the system admin identity
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    products = db.relationship('Product', backref='seller', lazy=True)
    favorites = db.relationship('Favorite', backref='user', lazy=True)

    def to_dict(self):
        # password_hash never leaves the backend
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'phone': self.phone,
            'location': self.location,
            'is_admin': bool(self.is_admin),
            'created_at': _iso(self.created_at),
        }


class Category(db.Model):
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    icon = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    products = db.relationship('Product', backref='category', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'icon': self.icon,
            'created_at': _iso(self.created_at),
        }


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    condition = db.Column(db.String(20), nullable=False)  # new / like-new / good / fair / poor
    transaction_type = db.Column(db.String(20), nullable=False, default='sell')  # sell / exchange / both
    images = db.Column(db.JSON, nullable=False, default=list)  # ordered list of pasted URLs

    # STATUS: 'available' listings show in the catalog, 'sold' only in My Products
    status = db.Column(db.String(20), nullable=False, default='available')
    views = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=True)
    seller_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)

    favorited_by = db.relationship('Favorite', backref='product', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        """Row plus embedded category and seller summaries."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'price': float(self.price) if self.price is not None else 0.0,
            'condition': self.condition,
            'transaction_type': self.transaction_type,
            'images': list(self.images or []),
            'status': self.status,
            'views': self.views or 0,
            'created_at': _iso(self.created_at),
            'category_id': self.category_id,
            'seller_id': self.seller_id,
            'category': {'id': self.category.id, 'name': self.category.name} if self.category else None,
            'seller': {
                'id': self.seller.id,
                'full_name': self.seller.full_name,
                'phone': self.seller.phone,
                'location': self.seller.location,
            } if self.seller else None,
        }


class Favorite(db.Model):
    __tablename__ = 'favorites'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'product_id', name='uq_favorites_user_product'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'product_id': self.product_id,
            'created_at': _iso(self.created_at),
            'product': self.product.to_dict() if self.product else None,
        }
