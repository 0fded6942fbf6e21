# scripts/create_staff_user.py
#  to run the script, run the following command:
#  python scripts/create_staff_user.py pharmacist@medcare.example --role pharmacist --password "S3cure-pass"

"""
Staff Account Script
Public registration only creates customers; pharmacists and admins come from here.
Existing accounts are promoted (and their password reset when one is given).
"""
import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from app.database.connection import AsyncSessionLocal, init_db
from app.users.security import get_password_hash
from app.users.user_models.user_model import STAFF_ROLES, User

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def create_staff_user(email: str, role: str, password: str = None,
                            first_name: str = "Staff", last_name: str = "User") -> User:
    await init_db()
    email = email.strip().lower()

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalars().first()

        if user:
            user.role = role
            user.is_active = True
            if password:
                user.hashed_password = get_password_hash(password)
            logger.info(f"✅ Promoted existing user {email} to {role}")
        else:
            if not password:
                raise ValueError("A password is required for a new account")
            user = User(
                email=email,
                hashed_password=get_password_hash(password),
                first_name=first_name,
                last_name=last_name,
                role=role,
                is_active=True,
            )
            db.add(user)
            logger.info(f"✅ Created {role} account {email}")

        await db.commit()
        return user


def main():
    parser = argparse.ArgumentParser(description="Create or promote a pharmacist/admin account")
    parser.add_argument("email")
    parser.add_argument("--role", choices=STAFF_ROLES, default="pharmacist")
    parser.add_argument("--password", help="Prompted for when omitted")
    parser.add_argument("--first-name", default="Staff")
    parser.add_argument("--last-name", default="User")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password (leave empty to keep existing): ") or None

    try:
        user = asyncio.run(create_staff_user(args.email, args.role, password, args.first_name, args.last_name))
    except ValueError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)

    print("\n" + "=" * 60)
    print(f"✅ {user.role.upper()} ACCOUNT READY")
    print("=" * 60)
    print(f"Email:  {user.email}")
    print(f"Role:   {user.role}")
    print("=" * 60)


if __name__ == "__main__":
    main()
