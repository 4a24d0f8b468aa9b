"""Create (or reset) the initial admin user

Run with: python -m gorepair.scripts.create_admin
"""
import os
from typing import Optional

from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from gorepair.db.session import SessionLocal
from gorepair.models.user import User, UserRole
from gorepair.utils.auth import get_password_hash

ADMIN_EMAIL = os.getenv("GOREPAIR_ADMIN_EMAIL", "admin@gorepair.in")
ADMIN_PASSWORD = os.getenv("GOREPAIR_ADMIN_PASSWORD", "Admin@123")


class AdminAccount(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)


def create_admin_user(db: Optional[Session] = None, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> User:
    account = AdminAccount(email=email, password=password)
    owns_session = db is None
    if owns_session:
        db = SessionLocal()

    try:
        existing_admin = db.query(User).filter(User.email == account.email).first()

        if existing_admin:
            print("⚠️  Admin user already exists!")
            print(f"   Email: {existing_admin.email}")
            print(f"   Role: {existing_admin.role.value}")
            print(f"   Active: {existing_admin.is_active}")
            print("\n🔄 Resetting password and re-activating account")

            existing_admin.password_hash = get_password_hash(account.password)
            existing_admin.role = UserRole.ADMIN
            existing_admin.is_active = True
            db.commit()

            print("✅ Admin password reset successfully!")
            print(f"   ID: {existing_admin.id}")
            return existing_admin

        admin = User(
            email=account.email,
            password_hash=get_password_hash(account.password),
            full_name="GoRepair Administrator",
            role=UserRole.ADMIN,
            is_active=True,
            phone="9876543210"
        )

        db.add(admin)
        db.commit()
        db.refresh(admin)

        print("✅ Admin user created successfully!")
        print(f"   Email: {admin.email}")
        print(f"   Role: {admin.role.value}")
        print(f"   ID: {admin.id}")
        return admin

    except Exception as e:
        db.rollback()
        print(f"❌ Error creating admin user: {str(e)}")
        raise
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    print("🚀 Creating GoRepair Admin User...")
    print("=" * 50)
    create_admin_user()
