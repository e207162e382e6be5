"""
Identity Module

User directory and the explicit request context handed to every engine call.
Authentication itself happens upstream; this module only resolves an
authenticated username to an identity and computes the privilege flag once.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import UserNotFound, UserLocked, ValidationFailed, InsufficientRole
from .logging_config import get_logger, log_action


logger = get_logger("bms.identity")


class UserRole(Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"


@dataclass
class UserIdentity(StorageRecord):
    """Directory entry for a user"""
    username: str
    email: str
    role: UserRole = UserRole.CUSTOMER
    full_name: str = ""
    account_locked: bool = False

    @property
    def user_id(self) -> str:
        return self.id

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, resolved at the boundary and passed explicitly"""
    user_id: str
    username: str
    role: UserRole
    is_privileged: bool = False
    client_ip: Optional[str] = None

    @classmethod
    def for_identity(cls, identity: UserIdentity, client_ip: Optional[str] = None) -> 'RequestContext':
        return cls(
            user_id=identity.id,
            username=identity.username,
            role=identity.role,
            is_privileged=identity.is_admin,
            client_ip=client_ip
        )

    @classmethod
    def system(cls) -> 'RequestContext':
        """Context for scheduled housekeeping jobs"""
        return cls(user_id="system", username="system", role=UserRole.ADMIN, is_privileged=True)


def require_privileged(context: RequestContext, operation: str) -> None:
    """Raise InsufficientRole unless the context carries the privileged capability"""
    if not context.is_privileged:
        raise InsufficientRole(context.username, operation)


class UserDirectory:
    """Stores users and resolves authenticated usernames"""

    def __init__(self, storage: StorageInterface, table_name: str = "users"):
        self.storage = storage
        self.table_name = table_name

    def register(
        self,
        username: str,
        email: str,
        role: UserRole = UserRole.CUSTOMER,
        full_name: str = ""
    ) -> UserIdentity:
        """Add a user to the directory"""
        if not username or not email:
            raise ValidationFailed("Username and email are required")
        if self.storage.find(self.table_name, {"username": username}):
            raise ValidationFailed(f"Username {username} already exists")

        now = datetime.now(timezone.utc)
        user = UserIdentity(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            email=email,
            role=role,
            full_name=full_name
        )
        self._save_user(user)

        log_action(logger, "info", f"User {username} registered",
                   user_id=user.id, action="user_registered", resource="user",
                   extra={"role": role.value})
        return user

    def get_user(self, user_id: str) -> Optional[UserIdentity]:
        data = self.storage.load(self.table_name, user_id)
        if data:
            return self._user_from_dict(data)
        return None

    def get_user_by_username(self, username: str) -> Optional[UserIdentity]:
        users = self.storage.find(self.table_name, {"username": username})
        if users:
            return self._user_from_dict(users[0])
        return None

    def list_users(self) -> List[UserIdentity]:
        return [self._user_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def resolve(self, username: str) -> UserIdentity:
        """
        Resolve an authenticated principal

        Raises:
            UserNotFound: unknown username
            UserLocked: the user is locked and may not act
        """
        user = self.get_user_by_username(username)
        if user is None:
            raise UserNotFound(username)
        if user.account_locked:
            raise UserLocked(username)
        return user

    def context_for(self, username: str, client_ip: Optional[str] = None) -> RequestContext:
        return RequestContext.for_identity(self.resolve(username), client_ip)

    def lock_user(self, user_id: str) -> bool:
        return self._set_locked(user_id, True)

    def unlock_user(self, user_id: str) -> bool:
        return self._set_locked(user_id, False)

    def _set_locked(self, user_id: str, locked: bool) -> bool:
        user = self.get_user(user_id)
        if not user:
            return False
        user.account_locked = locked
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)
        log_action(logger, "warning" if locked else "info",
                   f"User {user.username} {'locked' if locked else 'unlocked'}",
                   user_id=user_id, action="user_locked" if locked else "user_unlocked",
                   resource="user")
        return True

    def _save_user(self, user: UserIdentity) -> None:
        data = user.to_dict()
        data['role'] = user.role.value
        self.storage.save(self.table_name, user.id, data)

    def _user_from_dict(self, data: Dict) -> UserIdentity:
        return UserIdentity(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            username=data['username'],
            email=data['email'],
            role=UserRole(data['role']),
            full_name=data.get('full_name', ""),
            account_locked=data.get('account_locked', False)
        )
