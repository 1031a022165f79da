"""
Display-name resolution for participants and operators.

Identity is resolved by an ordered chain of named strategies. Each strategy
returns a ``UserInfo`` or ``None``; the first hit wins. The chain is built
from ``settings.USER_INFO_STRATEGIES`` and new strategies can be registered
with :func:`register_strategy` without touching the check-in flow.
"""

import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from eventgate.controllers import registration as crud_registration
from eventgate.core.config import settings
from eventgate.schemas.user import UserInfo

logger = logging.getLogger(__name__)

# External identity lookup: user id -> {"full_name": ..., "email": ...} or None
IdentityDirectory = Callable[[str], Optional[dict]]

UNKNOWN_NAME = "Unknown"


class UserInfoStrategy:
    name = "base"

    def resolve(self, db: Session, user_id: str) -> Optional[UserInfo]:
        raise NotImplementedError


class ProfileStrategy(UserInfoStrategy):
    """Full name stored on the local users table."""
    name = "profile"

    def resolve(self, db: Session, user_id: str) -> Optional[UserInfo]:
        user = crud_registration.get_user(db, user_id)
        if not user or not (user.full_name or "").strip():
            return None
        return UserInfo(user_id=user_id, full_name=user.full_name.strip(), email=user.email, source=self.name)


class IdentityDirectoryStrategy(UserInfoStrategy):
    """Ask the external identity service for account metadata."""
    name = "identity_directory"

    def __init__(self, directory: Optional[IdentityDirectory] = None):
        self.directory = directory

    def resolve(self, db: Session, user_id: str) -> Optional[UserInfo]:
        if self.directory is None:
            return None

        try:
            record = self.directory(user_id)
        except Exception as e:
            logger.warning(f"Identity directory lookup failed for user {user_id}: {e}")
            return None
        if not record:
            return None

        full_name = (record.get("full_name") or "").strip()
        email = record.get("email")
        if not full_name and not email:
            return None
        return UserInfo(user_id=user_id, full_name=full_name or email, email=email, source=self.name)


class EmailStrategy(UserInfoStrategy):
    """Fall back to the account email as display name."""
    name = "email"

    def resolve(self, db: Session, user_id: str) -> Optional[UserInfo]:
        user = crud_registration.get_user(db, user_id)
        if not user or not user.email:
            return None
        return UserInfo(user_id=user_id, full_name=user.email, email=user.email, source=self.name)


class DefaultStrategy(UserInfoStrategy):
    name = "default"

    def resolve(self, db: Session, user_id: str) -> Optional[UserInfo]:
        return UserInfo(user_id=user_id, full_name=UNKNOWN_NAME, email=None, source=self.name)


STRATEGY_REGISTRY: Dict[str, Callable[..., UserInfoStrategy]] = {
    ProfileStrategy.name: lambda **options: ProfileStrategy(),
    IdentityDirectoryStrategy.name: lambda **options: IdentityDirectoryStrategy(options.get("identity_directory")),
    EmailStrategy.name: lambda **options: EmailStrategy(),
    DefaultStrategy.name: lambda **options: DefaultStrategy(),
}


def register_strategy(name: str, factory: Callable[..., UserInfoStrategy]) -> None:
    """Make a strategy available to USER_INFO_STRATEGIES under ``name``."""
    STRATEGY_REGISTRY[name] = factory


class UserInfoResolver:
    def __init__(self, strategies: List[UserInfoStrategy]):
        self.strategies = list(strategies)

    @classmethod
    def from_names(cls, names: Optional[List[str]] = None, **options) -> "UserInfoResolver":
        names = names if names is not None else settings.USER_INFO_STRATEGIES
        strategies = []
        for name in names:
            factory = STRATEGY_REGISTRY.get(name)
            if factory is None:
                raise ValueError(f"Unknown user info strategy: {name}")
            strategies.append(factory(**options))
        return cls(strategies)

    def resolve(self, db: Session, user_id: str) -> UserInfo:
        for strategy in self.strategies:
            info = strategy.resolve(db, user_id)
            if info is not None:
                return info
            logger.debug(f"Strategy {strategy.name} could not resolve user {user_id}")

        return DefaultStrategy().resolve(db, user_id)
