from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class Role(Enum):
    MEMBER = "user"
    ADMIN = "admin"


@dataclass
class User:
    phone: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_line(self) -> str:
        return f"{self.role.value} {self.phone}"

    @classmethod
    def from_line(cls, line: str) -> "User":
        parts = line.split()
        if len(parts) != 2:
            raise ValueError(f"Expected '<role> <phone>', got {line!r}")
        role_raw, phone = parts
        try:
            role = Role(role_raw)
        except ValueError as exc:
            raise ValueError(f"Unknown role {role_raw!r}") from exc
        return cls(phone=phone, role=role)


def load_users(path: Path) -> List[User]:
    if not path.exists():
        logger.info("No user list at %s, starting empty", path)
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            raw_lines = f.readlines()
    except OSError as exc:
        logger.error("Failed to load users from %s: %s", path, exc)
        return []
    users: List[User] = []
    seen = set()
    for raw in raw_lines:
        line = raw.strip()
        if not line:
            continue
        try:
            user = User.from_line(line)
        except ValueError as exc:
            logger.error("Unrecognised line in user list %s: %s", path, exc)
            continue
        if user.phone in seen:
            logger.warning("Skipping duplicate user %s in %s", user.phone, path)
            continue
        seen.add(user.phone)
        users.append(user)
    return users


def save_users(path: Path, users: List[User]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for user in users:
            f.write(user.to_line() + "\n")
