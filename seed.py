import argparse
import logging
import re

from app.config import settings
from app.database import SessionLocal, engine
from app.models.all_models import Base, Clinic, ClinicStatus, User, UserRole, UserStatus, clinic_now
from app.utils.auth import hash_password

logger = logging.getLogger("seed")


def create_user(email, password, full_name, phone=None, role=UserRole.SUPER_ADMIN, clinic_name=None):
    """Create a platform super admin, or a clinic together with its Admin."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    try:
        # Check if user already exists
        existing_user = session.query(User).filter_by(email=email).first()
        if existing_user:
            logger.error("User with email %s already exists", email)
            return

        clinic = None
        if role != UserRole.SUPER_ADMIN:
            clinic = Clinic(
                name=clinic_name,
                slug=re.sub(r'[^a-z0-9]+', '-', clinic_name.lower()).strip('-'),
                email=email,
                phone=phone,
                status=ClinicStatus.ACTIVE,
                settings={"consultationFee": settings.DEFAULT_CONSULTATION_FEE},
            )
            session.add(clinic)
            session.flush()

        new_user = User(
            clinic_id=clinic.id if clinic else None,
            full_name=full_name,
            email=email,
            phone=phone,
            password=hash_password(password),
            role=role,
            status=UserStatus.ACTIVE,
            created_at=clinic_now(),
            updated_at=clinic_now()
        )
        session.add(new_user)
        session.commit()

        logger.info("%s user created successfully: %s", role.value, email)
        if clinic:
            logger.info("Clinic: %s (%s)", clinic.name, clinic.slug)

    except Exception as e:
        session.rollback()
        logger.error("Error creating user: %s", e)
    finally:
        session.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Create a super admin, or a clinic with its admin")
    parser.add_argument("--email", required=True, help="Email address")
    parser.add_argument("--password", required=True, help="Password")
    parser.add_argument("--full-name", required=True, help="Full name")
    parser.add_argument("--phone", help="Phone number")
    parser.add_argument("--clinic", help="Clinic name; when given, an Admin for that clinic is created")

    args = parser.parse_args()

    create_user(
        email=args.email,
        password=args.password,
        full_name=args.full_name,
        phone=args.phone,
        role=UserRole.ADMIN if args.clinic else UserRole.SUPER_ADMIN,
        clinic_name=args.clinic
    )
