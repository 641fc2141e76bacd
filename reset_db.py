from app import app, db

# This script deletes the old database and creates a fresh one
# matching your current models.
with app.app_context():
    db.drop_all()   # Deletes everything
    db.create_all() # Creates fresh profiles/categories/products/favorites tables
    print("✅ Database has been reset! Run seed_db.py to add categories.")
