"""
Member Directory Interface

Registration, approval and authentication live in an external service. The
core only needs ``get_user(id)`` to gate operations: approved membership to
borrow or open accounts, the ADMIN role to approve, reject or disburse loans
and to run interest accrual.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum
import logging
import threading

import httpx

from .errors import NotFound, PermissionDenied
from .storage import StorageInterface

logger = logging.getLogger("sacco.members")


class MemberRole(Enum):
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    TREASURER = "TREASURER"
    CHAIRPERSON = "CHAIRPERSON"


class MembershipStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


@dataclass(frozen=True)
class Member:
    """What the core knows about a user"""
    id: str
    role: MemberRole
    membership_status: MembershipStatus

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    @property
    def is_approved(self) -> bool:
        return self.membership_status == MembershipStatus.APPROVED


class UserDirectory(ABC):
    """Lookup into the external user/auth subsystem"""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[Member]:
        """Return the member or None if unknown"""
        pass

    def close(self) -> None:
        """Release any client held by the directory"""
        pass


class InMemoryUserDirectory(UserDirectory):
    """Directory held in process, for tests and local development"""

    def __init__(self):
        self._members: Dict[str, Member] = {}
        self._lock = threading.Lock()

    def add_member(
        self,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        membership_status: MembershipStatus = MembershipStatus.APPROVED
    ) -> Member:
        member = Member(id=user_id, role=role, membership_status=membership_status)
        with self._lock:
            self._members[user_id] = member
        return member

    def get_user(self, user_id: str) -> Optional[Member]:
        with self._lock:
            return self._members.get(user_id)


class StorageUserDirectory(UserDirectory):
    """
    Members table in the shared database

    The registration service writes approved memberships here; the core
    only reads them, apart from ``add_member`` used for seeding.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "members"

    def add_member(
        self,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        membership_status: MembershipStatus = MembershipStatus.APPROVED
    ) -> Member:
        member = Member(id=user_id, role=role, membership_status=membership_status)
        self.storage.save(self.table_name, user_id, {
            "id": user_id,
            "role": role.value,
            "membership_status": membership_status.value
        })
        return member

    def get_user(self, user_id: str) -> Optional[Member]:
        data = self.storage.load(self.table_name, user_id)
        if not data:
            return None
        return _member_from_dict(data)


class HttpUserDirectory(UserDirectory):
    """REST client for the auth service's user lookup"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def get_user(self, user_id: str) -> Optional[Member]:
        """Unknown users and an unreachable service both resolve to None"""
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self._client.get(f"{self.base_url}/users/{user_id}", headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Auth service lookup of {user_id} failed: {e}")
            return None

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"Auth service returned {response.status_code} for {user_id}: {response.text}")
            return None

        data = response.json()
        try:
            return _member_from_dict(data.get("user", data))
        except (KeyError, ValueError) as e:
            logger.warning(f"Auth service sent an unreadable user record for {user_id}: {e}")
            return None

    def close(self) -> None:
        self._client.close()


def _member_from_dict(data: Dict[str, Any]) -> Member:
    # The auth service speaks camelCase, the members table snake_case
    status = data.get("membership_status") or data["membershipStatus"]
    return Member(
        id=str(data["id"]),
        role=MemberRole(str(data.get("role", MemberRole.MEMBER.value)).upper()),
        membership_status=MembershipStatus(str(status).upper())
    )


def create_user_directory(
    storage: StorageInterface,
    base_url: str = "",
    timeout: float = 2.0,
    api_key: Optional[str] = None
) -> UserDirectory:
    """Auth service client when a URL is configured, otherwise the members table"""
    if base_url:
        return HttpUserDirectory(base_url, timeout=timeout, api_key=api_key or None)
    return StorageUserDirectory(storage)


def require_member(directory: UserDirectory, user_id: str) -> Member:
    member = directory.get_user(user_id)
    if not member:
        raise NotFound(f"User {user_id} not found")
    return member


def require_approved_member(directory: UserDirectory, user_id: str) -> Member:
    """Only approved members may borrow or open savings accounts"""
    member = require_member(directory, user_id)
    if not member.is_approved:
        raise PermissionDenied(
            f"Membership of {user_id} is {member.membership_status.value}; only approved members may do this"
        )
    return member


def require_admin(directory: UserDirectory, user_id: str) -> Member:
    member = require_member(directory, user_id)
    if not member.is_admin:
        raise PermissionDenied(f"User {user_id} is not an administrator")
    return member
