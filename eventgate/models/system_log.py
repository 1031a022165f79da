from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from eventgate.db.session import Base


class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Operator who performed the action
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    user_name = Column(String, nullable=False)

    # Action details
    action = Column(String, nullable=False)  # e.g. "CHECK_IN", "CANCEL", "UPDATE"
    description = Column(Text, nullable=False)
    table_name = Column(String, nullable=True)
    record_id = Column(String(36), nullable=True)

    # Additional context
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", backref="system_logs")
