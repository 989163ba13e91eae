# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.registry module

Email to account address registry.

Each verified email maps to exactly one account address. The first address
registered for an email is canonical: later requests for the same email get
the stored record back and the address they supplied is ignored.

Records are held in memory and, when a path is given, written through to a
JSON file so they survive restarts.
"""

import json
import logging
import os
import secrets
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """The registry could not read or write its records."""


class DuplicateIdentity(RegistryError):
    """create() was called for an email that already has a record."""


def normalize_email(email):
    return email.strip().lower()


class AccountRecord:
    """A stored email to address mapping."""

    __slots__ = ("id", "email", "address", "created_at")

    def __init__(self, id, email, address, created_at):
        self.id = id
        self.email = email
        self.address = address
        self.created_at = created_at

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "address": self.address,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            email=data["email"],
            address=data["address"],
            created_at=data["createdAt"],
        )

    def __eq__(self, other):
        if not isinstance(other, AccountRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"AccountRecord({self.email!r}, {self.address!r})"


class AccountRegistry:
    """Create-if-absent store keyed by email.

    All operations take a lock, so find-then-create in return_account() is
    atomic with respect to other threads using the same registry.
    """

    def __init__(self, path=None):
        """
        Args:
            path: JSON file to persist records to. None keeps them in memory.

        Raises:
            RegistryError: if an existing file cannot be read or parsed.
        """
        self.path = Path(path) if path is not None else None
        self._records = {}
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            self._load()

    def _load(self):
        try:
            with open(self.path) as f:
                data = json.load(f)
            records = [AccountRecord.from_dict(item) for item in data["accounts"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise RegistryError(f"Cannot load account registry {self.path}: {exc}") from exc
        self._records = {rec.email: rec for rec in records}
        logger.info("Loaded %d account records from %s", len(self._records), self.path)

    def _save(self):
        if self.path is None:
            return
        payload = {"accounts": [rec.to_dict() for rec in self._records.values()]}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise RegistryError(f"Cannot write account registry {self.path}: {exc}") from exc

    def find_by_identity(self, email):
        """Return the AccountRecord for ``email``, or None."""
        with self._lock:
            return self._records.get(normalize_email(email))

    def create(self, email, address):
        """Store a new record for ``email``.

        Raises:
            DuplicateIdentity: if the email already has a record.
            RegistryError: if the record cannot be persisted.
        """
        with self._lock:
            return self._create(normalize_email(email), address)

    def _create(self, email, address):
        if email in self._records:
            raise DuplicateIdentity(f"Account already registered for {email}")
        record = AccountRecord(
            id=secrets.token_hex(8),
            email=email,
            address=address,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._records[email] = record
        try:
            self._save()
        except RegistryError:
            del self._records[email]
            raise
        logger.info("Registered account %s for %s", address, email)
        return record

    def return_account(self, email, address):
        """Look up ``email``, creating a record with ``address`` only if absent.

        Returns:
            The canonical stored AccountRecord. An existing record is never
            updated, even when ``address`` differs from the stored one.
        """
        key = normalize_email(email)
        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                if existing.address != address:
                    logger.debug(
                        "Ignoring new address %s for %s, keeping %s",
                        address, key, existing.address,
                    )
                return existing
            return self._create(key, address)

    def __len__(self):
        with self._lock:
            return len(self._records)
