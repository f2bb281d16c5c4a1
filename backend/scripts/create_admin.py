from dotenv import load_dotenv
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
load_dotenv(".env")

from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.core.settings import settings  # noqa: E402
from app.models import admin_action, credit_account, lead, lead_unlock, payment, profile, rate_limit  # noqa: E402,F401
from app.models.profile import Admin, Profile  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Grant admin privileges to a user id.")
    parser.add_argument("user_id")
    parser.add_argument("--email", default=None)
    parser.add_argument("--granted-by", default="cli")
    args = parser.parse_args()

    user_id = args.user_id.strip()
    if not user_id:
        print("user_id required")
        return 2

    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.get(Admin, user_id) is not None:
            print(f"{user_id} is already an admin")
            return 0
        if db.get(Profile, user_id) is None:
            db.add(Profile(id=user_id, email=args.email, role="customer"))
        db.add(Admin(user_id=user_id, granted_by=args.granted_by))
        db.commit()
    finally:
        db.close()

    print(f"granted admin to {user_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
