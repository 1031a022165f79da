from enum import Enum


class EventStatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"


class RegistrationStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
