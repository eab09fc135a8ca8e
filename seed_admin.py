"""Create the first admin account so role-restricted routes can be used."""

import os

from pymongo.database import Database

from auth import hash_password
from config import DATABASE_NAME, MONGO_URI
from database import connect, create_document
from schemas import Doctor

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")


def seed_admin(db: Database, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> str:
    """Insert the admin doctor unless one with this email exists. Returns its id."""
    existing = db["doctor"].find_one({"email": email})
    if existing:
        print(f"Admin already exists: {email}")
        return str(existing["_id"])

    admin = Doctor(
        name="Admin Doctor",
        email=email,
        password_hash=hash_password(password),
        role="admin",
        specialization="Administration",
        experience=10,
    )
    admin_id = create_document(db, "doctor", admin)
    print(f"Admin created: {email}")
    return admin_id


if __name__ == "__main__":
    client, db = connect(MONGO_URI, DATABASE_NAME)
    try:
        seed_admin(db)
    finally:
        client.close()
