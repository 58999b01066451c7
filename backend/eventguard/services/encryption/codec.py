"""
Transparent field codec.

Repositories call ``encode_for_write`` right before an INSERT/UPDATE and
``decode_for_read`` right after a SELECT. Callers above the repository only
ever see plaintext.

Searching encrypted columns
---------------------------
Envelopes carry a random IV, so the same plaintext never encrypts to the
same bytes twice and an equality query on ciphertext almost never matches.
``find_by_encrypted`` therefore tries the equality query first and then
falls back to scanning every non-null row, decrypting and comparing in
memory. That scan is O(n) in the table size and is the scaling limit of
encrypted-searchable fields: keep such lookups on small tables, or add a
keyed blind index column when a table outgrows it.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import structlog
from sqlalchemy import Table, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventguard.core.errors import ConfigurationError, DecryptionError, FieldDecodeError
from eventguard.core.metrics import FIELD_DECRYPT_FAILURES
from eventguard.services.encryption.cipher import FieldCipher

_log = structlog.get_logger(__name__)

# Attributes stored encrypted, per table.
ENCRYPTED_FIELDS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        "users": frozenset({"email", "mfa_secret"}),
        "events": frozenset({"description"}),
        "helpdesk_messages": frozenset({"content"}),
    }
)


class TransparentFieldCodec:
    """
    Encrypts designated attributes on write and decrypts them on read.

    Args:
        cipher: The field cipher.
        encrypted_fields: Table name → attribute names stored encrypted.
        strict: When True an undecryptable envelope raises
            ``FieldDecodeError``. When False (default) the stored value is
            returned unchanged and a warning is logged.
    """

    def __init__(
        self,
        cipher: FieldCipher,
        encrypted_fields: Mapping[str, frozenset[str]] = ENCRYPTED_FIELDS,
        strict: bool = False,
    ) -> None:
        self._cipher = cipher
        self._fields = encrypted_fields
        self._strict = strict

    @property
    def cipher(self) -> FieldCipher:
        return self._cipher

    def fields_for(self, entity_type: str) -> frozenset[str]:
        return self._fields.get(entity_type, frozenset())

    def encode_for_write(self, entity_type: str, attrs: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``attrs`` with designated attributes encrypted."""
        encoded = dict(attrs)
        for field in self.fields_for(entity_type):
            value = encoded.get(field)
            if value is None or value == "" or self._cipher.is_encrypted(value):
                continue
            try:
                encoded[field] = self._cipher.encrypt(str(value))
            except ConfigurationError as exc:
                _log.warning(
                    "field_encryption_skipped",
                    entity_type=entity_type,
                    field=field,
                    reason=str(exc),
                )
        return encoded

    def decode_for_read(self, entity_type: str, attrs: Mapping[str, Any]) -> dict[str, Any]:
        """
        Return a copy of ``attrs`` with designated attributes decrypted.

        Values that are not envelopes (rows written before encryption was
        enabled) are passed through untouched. Each field fails in
        isolation; one corrupt column never aborts the whole load.
        """
        decoded = dict(attrs)
        for field in self.fields_for(entity_type):
            value = decoded.get(field)
            if not self._cipher.is_encrypted(value):
                continue
            try:
                decoded[field] = self._cipher.decrypt(value)
            except ConfigurationError as exc:
                _log.warning(
                    "field_decryption_skipped",
                    entity_type=entity_type,
                    field=field,
                    reason=str(exc),
                )
                continue
            except DecryptionError as exc:
                FIELD_DECRYPT_FAILURES.labels(entity_type=entity_type, field=field).inc()
                if self._strict:
                    raise FieldDecodeError(entity_type, field, str(exc)) from exc
                _log.warning(
                    "field_decryption_failed",
                    entity_type=entity_type,
                    field=field,
                    reason=str(exc),
                )
        return decoded

    async def find_by_encrypted(
        self,
        session: AsyncSession,
        table: Table,
        field: str,
        plaintext: str,
    ) -> dict[str, Any] | None:
        """
        Find the first row whose encrypted ``field`` decrypts to ``plaintext``.

        Returns the decoded row mapping, or None.
        """
        entity_type = table.name
        column = table.c[field]

        # (a) Equality on freshly encrypted ciphertext. Only hits when the
        # column holds a value that was never encrypted (encryption off).
        try:
            needle = self._cipher.encrypt(plaintext)
        except ConfigurationError:
            needle = plaintext
        result = await session.execute(select(table).where(column == needle).limit(1))
        row = result.mappings().first()
        if row is not None:
            return self.decode_for_read(entity_type, row)

        # (b) O(n) scan with in-memory comparison.
        result = await session.execute(select(table).where(column.is_not(None)))
        scanned = 0
        for row in result.mappings():
            scanned += 1
            try:
                candidate = self.decode_for_read(entity_type, {field: row[field]})[field]
            except FieldDecodeError:
                # strict mode: one corrupt row must not hide the others
                continue
            if candidate == plaintext:
                _log.debug("encrypted_lookup_scan", table=entity_type, rows_scanned=scanned)
                return self.decode_for_read(entity_type, row)

        _log.debug("encrypted_lookup_miss", table=entity_type, rows_scanned=scanned)
        return None
