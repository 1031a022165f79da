from .user import User
from .event import Event, Registration
from .dependent import Dependent
from .check_in import CheckIn
from .check_in_stats import CheckInStats
from .system_log import SystemLog
