from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.phone import get_normalizer
from app.models.account import Account
from app.models.enums import ProfileRole
from app.models.role_profile import RoleProfileRecord

# phone (as a legacy client may have stored it) -> roles
DEMO_PROFILES = {
    "+919876543210": [(ProfileRole.BROKER, "Asha Brokerage"), (ProfileRole.SOCIETY_OWNER, "Asha Patil")],
    "8799038003": [(ProfileRole.BUYER_SELLER, "Ravi Kulkarni"), (ProfileRole.SOCIETY_MEMBER, "Ravi Kulkarni")],
    "09820012345": [(ProfileRole.DEVELOPER, "Skyline Developers")],
    "+919000000001": [(ProfileRole.ADMIN, "Platform Admin")],
}


def seed(db: Session) -> int:
    """Idempotent demo data for local development. Returns rows inserted."""
    normalizer = get_normalizer()
    inserted = 0

    for stored_phone, roles in DEMO_PROFILES.items():
        canonical = normalizer.normalize(stored_phone)
        if db.get(Account, canonical) is None:
            db.add(Account(phone=canonical, is_suspended=False))

        for role, name in roles:
            exists = db.execute(
                select(RoleProfileRecord).where(
                    RoleProfileRecord.phone == stored_phone,
                    RoleProfileRecord.role == role.value,
                )
            ).scalar_one_or_none()
            if exists:
                continue
            db.add(RoleProfileRecord(phone=stored_phone, role=role.value, display_name=name))
            inserted += 1

    db.commit()
    return inserted


if __name__ == "__main__":
    from app.db.base import Base
    from app.db.session import SessionLocal, engine
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        print(f"seeded {seed(db)} profiles")
