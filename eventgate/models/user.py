from sqlalchemy import Column, String, Enum, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from eventgate.db.session import Base
from eventgate.schemas.user import RoleEnum
from eventgate.utils.datetime_utils import new_id


class User(Base):
    """Local mirror of an identity-service account"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    role = Column(Enum(RoleEnum), default=RoleEnum.user, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    registrations = relationship("Registration", back_populates="user")
    dependents = relationship("Dependent", back_populates="user", order_by="Dependent.created_at")
