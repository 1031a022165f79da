import logging
import os

from sqlalchemy.orm import Session

import eventgate.models  # noqa: F401  registers every table on Base.metadata
from eventgate.db.session import SessionLocal, Base, engine
from eventgate.models.user import User
from eventgate.schemas.user import RoleEnum

logger = logging.getLogger(__name__)


def init_db():
    # Create tables
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        # Local mirror of the identity-service admin so scanner operators resolve to a name
        admin_email = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@eventgate.local")
        admin = db.query(User).filter(User.email == admin_email).first()
        if not admin:
            db.add(User(full_name="Admin User", email=admin_email, role=RoleEnum.admin))
            db.commit()
            logger.info("Default admin user created.")
        else:
            logger.info("Admin user already exists.")
    finally:
        db.close()
