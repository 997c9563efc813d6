# capability interfaces of the hosted data/auth/storage platform
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from db.models import Identity
from utils.subscription import Subscription

Row = Dict[str, Any]
Filters = Mapping[str, Any]


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthCallback = Callable[[AuthEvent, Optional[Identity]], None]


class IdentityProvider(Protocol):
    """
    Remote identity provider.
    Failures raise AuthError (rejected) or TransportError (unreachable).
    """

    async def get_current_session(self) -> Optional[Identity]: ...

    def subscribe(self, callback: AuthCallback) -> Subscription: ...

    async def sign_in(self, email: str, password: str) -> Identity: ...

    async def sign_up(self, email: str, password: str) -> Identity: ...

    async def sign_out(self) -> None: ...


class DataClient(Protocol):
    """
    Generic record operations.
    A filter value that is a list or tuple matches any of its members.
    Failures raise RemoteError.
    """

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]: ...

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Row]: ...

    async def insert_batch(
        self, batches: Sequence[Tuple[str, Sequence[Mapping[str, Any]]]]
    ) -> List[List[Row]]:
        """all batches are stored in one transaction or not at all"""
        ...

    async def update(
        self, table: str, filters: Filters, patch: Mapping[str, Any]
    ) -> List[Row]: ...


class BlobStorage(Protocol):
    async def upload(self, bucket: str, path: str, data: bytes) -> None: ...

    def public_url(self, bucket: str, path: str) -> str: ...


class KeyValueStore(Protocol):
    """durable, device scoped, synchronous storage (browser storage analog)"""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class Platform:
    identity: IdentityProvider
    data: DataClient
    storage: BlobStorage
