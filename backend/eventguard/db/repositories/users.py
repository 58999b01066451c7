"""
User persistence behind the field codec.

All reads decode and all writes encode ``email`` and ``mfa_secret``; the
rest of the application only handles plaintext ``UserAccount`` values.
Writes commit immediately, so callers audit rows that are already durable.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eventguard.core.errors import NotFoundError
from eventguard.db.models.user import RoleEnum, User
from eventguard.services.encryption.codec import TransparentFieldCodec

_TABLE = User.__table__


@dataclass
class UserAccount:
    """Decoded view of a ``users`` row."""

    id: int
    name: str
    email: str
    password_hash: str
    role: str
    is_active: bool
    mfa_enabled: bool
    mfa_secret: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN.value


_COLUMNS = tuple(f.name for f in fields(UserAccount))
_MUTABLE = ("name", "email", "password_hash", "role", "is_active", "mfa_enabled", "mfa_secret")


class UserRepository:
    def __init__(self, session: AsyncSession, codec: TransparentFieldCodec) -> None:
        self._session = session
        self._codec = codec

    def _to_account(self, row: Any) -> UserAccount:
        decoded = self._codec.decode_for_read(_TABLE.name, row)
        return UserAccount(**{name: decoded[name] for name in _COLUMNS})

    async def load(self, user_id: int) -> UserAccount | None:
        result = await self._session.execute(select(_TABLE).where(_TABLE.c.id == user_id))
        row = result.mappings().first()
        return self._to_account(row) if row is not None else None

    async def find_by_email(self, email: str) -> UserAccount | None:
        """
        Look a user up by plaintext email.

        Falls back to a full-table decrypt-and-compare scan; see
        ``TransparentFieldCodec.find_by_encrypted`` for the cost.
        """
        row = await self._codec.find_by_encrypted(self._session, _TABLE, "email", email)
        if row is None:
            return None
        return UserAccount(**{name: row[name] for name in _COLUMNS})

    async def create(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: RoleEnum = RoleEnum.USER,
        is_active: bool = True,
    ) -> UserAccount:
        values = self._codec.encode_for_write(
            _TABLE.name,
            {
                "name": name,
                "email": email,
                "password_hash": password_hash,
                "role": role.value,
                "is_active": is_active,
                "mfa_enabled": False,
                "mfa_secret": None,
            },
        )
        result = await self._session.execute(insert(_TABLE).values(**values))
        await self._session.commit()
        return await self._require(result.inserted_primary_key[0])

    async def _require(self, user_id: int) -> UserAccount:
        account = await self.load(user_id)
        if account is None:
            raise NotFoundError("User", str(user_id))
        return account

    async def update(self, user_id: int, **changes: Any) -> None:
        unknown = set(changes) - set(_MUTABLE)
        if unknown:
            raise ValueError(f"Not updatable: {sorted(unknown)}")
        values = self._codec.encode_for_write(_TABLE.name, changes)
        await self._session.execute(
            update(_TABLE).where(_TABLE.c.id == user_id).values(**values)
        )
        await self._session.commit()
