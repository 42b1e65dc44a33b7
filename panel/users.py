from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .storage import Role, User, load_users, save_users

logger = logging.getLogger(__name__)

MAX_USERS = 256


class RegistryError(Exception):
    """Base class for rejected registry changes."""


class InvalidFormat(RegistryError):
    pass


class AlreadyAuthorized(RegistryError):
    pass


class CapacityExceeded(RegistryError):
    pass


class NotAuthorized(RegistryError):
    pass


class SelfRemovalDenied(RegistryError):
    pass


class LastAdminProtected(RegistryError):
    pass


def normalize_phone(phone: str) -> str:
    return "".join(phone.split())


class UserRegistry:
    """Ordered list of authorised phone numbers.

    ``None`` as a phone number stands for the local operator at the console,
    who is always authorised and always has admin rights. When
    ``storage_path`` is set, every change is written straight back.
    """

    def __init__(self, storage_path: Optional[Path] = None, max_users: int = MAX_USERS):
        self.storage_path = storage_path
        self.max_users = max_users
        self._users: List[User] = []

    def load(self) -> None:
        if self.storage_path is None:
            return
        self._users = load_users(self.storage_path)[: self.max_users]
        logger.info("%s users registered (from %s)", len(self._users), self.storage_path)

    @property
    def users(self) -> List[User]:
        return list(self._users)

    def __len__(self) -> int:
        return len(self._users)

    def find(self, phone: str) -> Optional[User]:
        for user in self._users:
            if user.phone == phone:
                return user
        return None

    def is_authorized(self, phone: Optional[str]) -> bool:
        if phone is None:
            return True
        return self.find(phone) is not None

    def is_admin_or_local(self, phone: Optional[str]) -> bool:
        if phone is None:
            return True
        user = self.find(phone)
        return user is not None and user.is_admin

    def admins(self) -> List[User]:
        return [u for u in self._users if u.is_admin]

    def members(self) -> List[User]:
        return [u for u in self._users if not u.is_admin]

    def add(self, phone: str, role: Role = Role.MEMBER) -> User:
        phone = normalize_phone(phone)
        if len(phone) < 2 or not phone.startswith("+"):
            raise InvalidFormat(phone)
        if self.find(phone) is not None:
            raise AlreadyAuthorized(phone)
        if len(self._users) >= self.max_users:
            raise CapacityExceeded(phone)
        user = User(phone=phone, role=role)
        self._users.append(user)
        self._persist()
        logger.info("Added %s as %s", phone, role.value)
        return user

    def remove(self, phone: str, acting_phone: Optional[str] = None) -> User:
        phone = normalize_phone(phone)
        user = self.find(phone)
        if user is None:
            raise NotAuthorized(phone)
        if acting_phone is not None and phone == acting_phone:
            raise SelfRemovalDenied(phone)
        if acting_phone is not None and user.is_admin and len(self.admins()) == 1:
            raise LastAdminProtected(phone)
        self._users = [u for u in self._users if u.phone != phone]
        self._persist()
        logger.info("Removed %s (requested by %s)", phone, acting_phone or "local operator")
        return user

    def _persist(self) -> None:
        if self.storage_path is None:
            return
        try:
            save_users(self.storage_path, self._users)
        except OSError as exc:
            logger.error("Could not write user list %s: %s", self.storage_path, exc)
