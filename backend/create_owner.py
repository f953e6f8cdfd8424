#!/usr/bin/env python3
"""
Script to create (or reset) the owner user.
Run from the backend directory: python create_owner.py [email] [password] [name]
"""
import sys
import os

# Add the app directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from controlai.core.database import SessionLocal, init_db
from controlai.core.roles import Role
from controlai.core.security import hash_password
from controlai.models.user import User


def create_owner(email: str = "owner@controlai.com", password: str = "admin123", name: str = "Proprietário"):
    init_db()
    db = SessionLocal()
    try:
        existing_user = db.query(User).filter(User.email == email).first()

        if existing_user:
            existing_user.role = Role.owner.value
            existing_user.hashed_password = hash_password(password)
            db.commit()
            print(f"\n✓ User '{email}' updated to owner role")
            user = existing_user
        else:
            user = User(
                email=email,
                name=name,
                hashed_password=hash_password(password),
                role=Role.owner.value,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            print("\n✓ Owner user created successfully!")

        print(f"\n{'='*50}")
        print("CREDENTIALS:")
        print(f"{'='*50}")
        print(f"Email: {user.email}")
        print(f"Password: {password}")
        print(f"Role: {user.role}")
        print(f"{'='*50}")

    except Exception as e:
        db.rollback()
        print(f"\n✗ Error creating owner user: {e}")
        raise
    finally:
        db.close()


if __name__ == '__main__':
    create_owner(*sys.argv[1:4])
