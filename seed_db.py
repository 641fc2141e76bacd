from app import app, db
from models import Category
from constants import DEFAULT_CATEGORIES

# This script populates your DB with the standard marketplace categories
with app.app_context():
    db.create_all()

    # Add them to DB if they don't exist
    for item in DEFAULT_CATEGORIES:
        exists = Category.query.filter_by(name=item["name"]).first()
        if not exists:
            db.session.add(Category(
                name=item["name"],
                icon=item["icon"],
                description=item["description"],
            ))

    db.session.commit()
    print("✅ Marketplace Categories Seeded!")
