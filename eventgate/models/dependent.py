from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, orm
from sqlalchemy.sql import func

from eventgate.db.session import Base
from eventgate.utils.datetime_utils import new_id, utc_now


class Dependent(Base):
    """A family member admitted alongside a registered user"""
    __tablename__ = "dependents"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    full_name = Column(String, nullable=False)
    age = Column(Integer, nullable=True)
    relationship = Column(String, nullable=True)  # e.g. "child", "spouse"
    notes = Column(Text, nullable=True)

    # Python-side default keeps sub-second ordering on SQLite
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = orm.relationship("User", back_populates="dependents")
