# src/db/local_platform.py
# sqlite/file backed stand-in for the hosted data, auth and storage platform
from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import aiosqlite

from db import database
from db.database import connect
from db.models import Identity
from db.platform import AuthCallback, AuthEvent, Filters, KeyValueStore, Platform, Row
from utils.config import AUTH_STORAGE_KEY, Settings
from utils.errors import AuthError, RemoteError, TransportError, ValidationError
from utils.logger import get_logger
from utils.subscription import Subscription

_logger = get_logger(__name__)

PBKDF2_ROUNDS = 120_000

# tables exposed through the generic data client, users stay private to auth
TABLES: Dict[str, Tuple[str, ...]] = {
    "profiles": (
        "id",
        "role",
        "full_name",
        "phone",
        "address",
        "avatar_url",
        "created_at",
    ),
    "products": (
        "id",
        "seller_id",
        "name",
        "description",
        "price",
        "category",
        "image_url",
        "status",
        "created_at",
    ),
    "orders": (
        "id",
        "user_id",
        "total_amount",
        "shipping_address",
        "status",
        "payment_method",
        "created_at",
    ),
    "order_items": ("id", "order_id", "product_id", "quantity", "price", "created_at"),
    "reviews": (
        "id",
        "product_id",
        "user_id",
        "rating",
        "comment",
        "image_url",
        "created_at",
    ),
    "seller_requests": (
        "id",
        "user_id",
        "shop_name",
        "description",
        "status",
        "created_at",
    ),
}


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


@asynccontextmanager
async def _platform_errors(action: str):
    """Translate sqlite/os failures into the platform error taxonomy."""
    try:
        yield
    except aiosqlite.IntegrityError as exc:
        raise RemoteError(f"{action} rejected: {exc}") from exc
    except aiosqlite.OperationalError as exc:
        raise TransportError(f"{action} failed: {exc}") from exc
    except aiosqlite.Error as exc:
        raise RemoteError(f"{action} failed: {exc}") from exc
    except OSError as exc:
        raise TransportError(f"{action} failed: {exc}") from exc


# ---------------------------
# Data
# ---------------------------


def _columns(table: str) -> Tuple[str, ...]:
    try:
        return TABLES[table]
    except KeyError:
        raise RemoteError(f'relation "{table}" does not exist') from None


def _check_column(table: str, column: str) -> str:
    if column not in _columns(table):
        raise RemoteError(f'column "{column}" of relation "{table}" does not exist')
    return column


def _where(table: str, filters: Optional[Filters]) -> Tuple[str, List[Any]]:
    """
    Build a WHERE clause from equality filters.
    list/tuple values become IN (...), an empty list matches nothing, None matches NULL.
    """
    if not filters:
        return "", []
    parts: List[str] = []
    params: List[Any] = []
    for column, value in filters.items():
        _check_column(table, column)
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                parts.append("1 = 0")
                continue
            parts.append(f"{column} IN ({', '.join('?' * len(values))})")
            params.extend(values)
        elif value is None:
            parts.append(f"{column} IS NULL")
        else:
            parts.append(f"{column} = ?")
            params.append(value)
    return " WHERE " + " AND ".join(parts), params


class SqliteDataClient:
    """
    Generic select/insert/update over the allow-listed tables.
    Rows go in and come out as plain dicts.
    """

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        columns = _columns(table)
        where, params = _where(table, filters)
        sql = f"SELECT {', '.join(columns)} FROM {table}{where}"
        if order_by:
            _check_column(table, order_by)
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        async with _platform_errors(f"select from {table}"):
            async with connect() as conn:
                cur = await conn.execute(sql + ";", tuple(params))
                rows = await cur.fetchall()
                await cur.close()
        return [dict(row) for row in rows]

    def _prepare(
        self, table: str, rows: Sequence[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        columns = _columns(table)
        prepared: List[Dict[str, Any]] = []
        for row in rows:
            record = dict(row)
            for column in record:
                _check_column(table, column)
            record.setdefault("id", uuid.uuid4().hex)
            if "created_at" in columns:
                record.setdefault("created_at", _now())
            prepared.append(record)
        return prepared

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Row]:
        (created,) = await self.insert_batch([(table, rows)])
        return created

    async def insert_batch(
        self, batches: Sequence[Tuple[str, Sequence[Mapping[str, Any]]]]
    ) -> List[List[Row]]:
        """
        Insert rows into several tables in one transaction, in the given order.
        Either every row is stored or none is.
        """
        prepared = [(table, self._prepare(table, rows)) for table, rows in batches]
        if not any(records for _, records in prepared):
            return [[] for _ in prepared]

        tables = ", ".join(table for table, _ in prepared)
        async with _platform_errors(f"insert into {tables}"):
            async with connect() as conn:
                # leaving without commit rolls the whole batch back
                for table, records in prepared:
                    for record in records:
                        names = list(record)
                        await conn.execute(
                            f"INSERT INTO {table} ({', '.join(names)}) "
                            f"VALUES ({', '.join('?' * len(names))});",
                            tuple(record[n] for n in names),
                        )
                await conn.commit()

        created: List[List[Row]] = []
        for table, records in prepared:
            ids = [record["id"] for record in records]
            rows = await self.select(table, {"id": ids}) if ids else []
            rows.sort(key=lambda r: ids.index(r["id"]))
            created.append(rows)
        return created

    async def update(
        self, table: str, filters: Filters, patch: Mapping[str, Any]
    ) -> List[Row]:
        if not patch:
            return await self.select(table, filters)
        for column in patch:
            _check_column(table, column)

        targets = await self.select(table, filters)
        ids = [row["id"] for row in targets]
        if not ids:
            return []

        assignments = ", ".join(f"{column} = ?" for column in patch)
        async with _platform_errors(f"update {table}"):
            async with connect() as conn:
                await conn.execute(
                    f"UPDATE {table} SET {assignments} "
                    f"WHERE id IN ({', '.join('?' * len(ids))});",
                    (*patch.values(), *ids),
                )
                await conn.commit()
        return await self.select(table, {"id": ids})


# ---------------------------
# Auth
# ---------------------------


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ROUNDS
    ).hex()
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt}${digest}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, rounds, salt, digest = encoded.split("$")
        rounds_n = int(rounds)
        salt_bytes = bytes.fromhex(salt)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt_bytes, rounds_n
    ).hex()
    return hmac.compare_digest(candidate, digest)


def _identity(row) -> Identity:
    return Identity(id=row[0], email=row[1], email_verified=bool(row[2]))


class SqliteIdentityProvider:
    """
    Email/password accounts in the `users` table.

    The signed-in user id is kept in the key-value store, so a session survives
    restarts. Change events are delivered on the next loop iteration, never
    inside the call that caused them.
    """

    def __init__(self, kv: KeyValueStore, token_key: str = AUTH_STORAGE_KEY) -> None:
        self._kv = kv
        self._token_key = token_key
        self._callbacks: List[AuthCallback] = []

    # events

    def subscribe(self, callback: AuthCallback) -> Subscription:
        self._callbacks.append(callback)

        def release():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(release)

    def _deliver(
        self, callback: AuthCallback, event: AuthEvent, identity: Optional[Identity]
    ) -> None:
        # skip listeners that unsubscribed after the event was queued
        if callback in self._callbacks:
            callback(event, identity)

    def _emit(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self._callbacks):
            loop.call_soon(self._deliver, callback, event, identity)

    # lookups

    async def _find(self, column: str, value: str):
        async with _platform_errors("auth lookup"):
            async with connect() as conn:
                cur = await conn.execute(
                    f"SELECT id, email, email_verified, password_hash FROM users WHERE {column} = ?;",
                    (value,),
                )
                row = await cur.fetchone()
                await cur.close()
        return row

    async def get_current_session(self) -> Optional[Identity]:
        user_id = self._kv.get(self._token_key)
        if not user_id:
            return None
        row = await self._find("id", user_id)
        if row is None:
            _logger.info("Stored session refers to a missing user, dropping it.")
            self._kv.delete(self._token_key)
            return None
        return _identity(row)

    # actions

    async def sign_in(self, email: str, password: str) -> Identity:
        email = (email or "").strip().lower()
        if not email or not password:
            raise AuthError("Email and password are required.")
        row = await self._find("email", email)
        if row is None or not await asyncio.to_thread(verify_password, password, row[3]):
            raise AuthError("Invalid login credentials")
        identity = _identity(row)
        try:
            self._kv.set(self._token_key, identity.id)
        except OSError as exc:
            raise AuthError(f"Could not store the session: {exc}") from exc
        self._emit(AuthEvent.SIGNED_IN, identity)
        return identity

    async def sign_up(self, email: str, password: str) -> Identity:
        """Create an account with a member profile. Does not sign in."""
        email = (email or "").strip().lower()
        if "@" not in email:
            raise AuthError("Unable to validate email address: invalid format")
        if len(password or "") < 6:
            raise AuthError("Password should be at least 6 characters.")
        if await self._find("email", email) is not None:
            raise AuthError("User already registered")

        user_id = str(uuid.uuid4())
        password_hash = await asyncio.to_thread(hash_password, password)
        now = _now()
        async with _platform_errors("sign up"):
            async with connect() as conn:
                await conn.execute(
                    "INSERT INTO users(id, email, password_hash, email_verified, created_at) VALUES (?, ?, ?, 0, ?);",
                    (user_id, email, password_hash, now),
                )
                await conn.execute(
                    "INSERT INTO profiles(id, role, created_at) VALUES (?, 'member', ?);",
                    (user_id, now),
                )
                await conn.commit()
        _logger.info(f"Registered new account {email}.")
        return Identity(id=user_id, email=email, email_verified=False)

    async def sign_out(self) -> None:
        try:
            self._kv.delete(self._token_key)
        except OSError as exc:
            raise AuthError(f"Could not clear the stored session: {exc}") from exc
        self._emit(AuthEvent.SIGNED_OUT, None)


# ---------------------------
# Storage
# ---------------------------


class LocalBlobStorage:
    """buckets are directories below `root`, public urls are file:// uris"""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _resolve(self, bucket: str, path: str) -> Path:
        base = self.root.resolve()
        target = (base / bucket / path).resolve()
        if base not in target.parents:
            raise ValidationError(f"Invalid storage path: {bucket}/{path}")
        return target

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as f:
            f.write(data)

    async def upload(self, bucket: str, path: str, data: bytes) -> None:
        target = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except FileExistsError as exc:
            raise RemoteError("The resource already exists") from exc
        except OSError as exc:
            raise TransportError(f"Upload failed: {exc}") from exc

    def public_url(self, bucket: str, path: str) -> str:
        return self._resolve(bucket, path).as_uri()


def open_local_platform(settings: Settings, kv: KeyValueStore) -> Platform:
    database.configure(settings.db_path)
    return Platform(
        identity=SqliteIdentityProvider(kv),
        data=SqliteDataClient(),
        storage=LocalBlobStorage(settings.blob_dir),
    )
