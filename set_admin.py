#!/usr/bin/env python3
"""
Set or clear the is_admin marker on a profile by email.

Usage:
  FLASK_APP=app python set_admin.py your@email.com
  FLASK_APP=app python set_admin.py your@email.com --revoke

The marker is what check_is_admin reads; the admin portal itself is gated by
ADMIN_USERNAME / ADMIN_PASSWORD.
"""
import sys
import argparse

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Grant or revoke the admin marker by email')
    parser.add_argument('email', help='Email address')
    parser.add_argument('--revoke', action='store_true',
                        help='Remove the admin marker instead of setting it')
    args = parser.parse_args()

    email = args.email.strip()
    is_admin = not args.revoke

    from app import app, db
    from models import Profile
    from sqlalchemy import func

    with app.app_context():
        profile = Profile.query.filter(func.lower(Profile.email) == email.lower()).first()
        if not profile:
            print(f"No profile found for {email}. They need to sign up first.")
            sys.exit(1)
        profile.is_admin = is_admin
        db.session.commit()
        print(f"Done! {email} is {'now' if is_admin else 'no longer'} an admin.")
