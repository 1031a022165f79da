from sqlalchemy.orm import Session
from typing import Optional, Dict, Any
from eventgate.models.system_log import SystemLog
from eventgate.models.check_in import CheckIn


class LoggingService:
    """Service for logging operator activities"""

    @staticmethod
    def log_activity(
        db: Session,
        user_id: str,
        user_name: str,
        action: str,
        description: str,
        table_name: Optional[str] = None,
        record_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> SystemLog:
        """
        Log an operator activity

        Args:
            db: Database session
            user_id: Operator who performed the action
            user_name: Display name of the operator at the time of the action
            action: Action type (CHECK_IN, CANCEL, UPDATE, ...)
            description: Human-readable description of the action
            table_name: Name of the table affected
            record_id: ID of the record affected
            details: Additional context as dictionary
            ip_address: IP address of the station
            user_agent: User agent string
        """
        log_entry = SystemLog(
            user_id=user_id,
            user_name=user_name,
            action=action.upper(),
            description=description,
            table_name=table_name,
            record_id=record_id,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent
        )

        db.add(log_entry)
        db.commit()
        db.refresh(log_entry)

        return log_entry

    @staticmethod
    def get_action_description(action: str, table_name: str, operation: str = "performed") -> str:
        """Generate human-readable descriptions for common actions"""
        descriptions = {
            "CHECK_IN": "Checked in participant",
            "CANCEL": f"Cancelled {table_name}",
            "UPDATE": f"Updated {table_name}",
        }

        return descriptions.get(action.upper(), f"{operation} {action} on {table_name}")

    @staticmethod
    def log_check_in(db: Session, user_id: str, user_name: str, check_in: CheckIn,
                     ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        """Log an admission"""
        return LoggingService.log_activity(
            db=db,
            user_id=user_id,
            user_name=user_name,
            action="CHECK_IN",
            description=f"Checked in {check_in.participant_name} (+{check_in.dependent_count} dependents)",
            table_name="event_checkins",
            record_id=check_in.id,
            details={
                "event_id": check_in.event_id,
                "registration_id": check_in.registration_id,
                "dependent_count": check_in.dependent_count,
                "method": check_in.method.value if check_in.method else None,
            },
            ip_address=ip_address,
            user_agent=user_agent
        )

    @staticmethod
    def log_check_in_cancellation(db: Session, user_id: str, user_name: str, check_in: CheckIn,
                                  ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        """Log a soft cancel of an admission"""
        return LoggingService.log_activity(
            db=db,
            user_id=user_id,
            user_name=user_name,
            action="CANCEL",
            description=f"Cancelled check-in of {check_in.participant_name}",
            table_name="event_checkins",
            record_id=check_in.id,
            details={"event_id": check_in.event_id, "registration_id": check_in.registration_id},
            ip_address=ip_address,
            user_agent=user_agent
        )

    @staticmethod
    def log_check_in_notes_update(db: Session, user_id: str, user_name: str, check_in: CheckIn,
                                  ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        return LoggingService.log_activity(
            db=db,
            user_id=user_id,
            user_name=user_name,
            action="UPDATE",
            description=LoggingService.get_action_description("UPDATE", "check-in notes"),
            table_name="event_checkins",
            record_id=check_in.id,
            details={"event_id": check_in.event_id},
            ip_address=ip_address,
            user_agent=user_agent
        )
