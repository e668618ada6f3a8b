"""
Capability keys and access control.

Two keys guard the songbook:
- the administrator key grants every operation; it is generated on first
  run and shown in an alert until someone presents it
- the optional user key grants read operations; without one, reads are
  open to everybody

Keys live in the data root as one value per file:
    administrator.key        administrator key
    user.key                 user key (optional)
    administrator.activated  marker: the administrator key has been used
"""

import asyncio
import logging
import os
import secrets
from pathlib import Path
from typing import Optional

from .types import Decision, KeyPair

logger = logging.getLogger(__name__)

ADMINISTRATOR_KEY_FILE = "administrator.key"
USER_KEY_FILE = "user.key"
ADMINISTRATOR_ACTIVATED_FILE = "administrator.activated"


def generate_key() -> str:
    """A fresh random capability key (32 hex characters)."""
    return secrets.token_hex(16)


class KeyStore:
    """Persists the key pair and the activation marker as plain files."""

    def __init__(self, data_root: Path):
        self._root = Path(data_root)

    @property
    def admin_key_path(self) -> Path:
        return self._root / ADMINISTRATOR_KEY_FILE

    @property
    def user_key_path(self) -> Path:
        return self._root / USER_KEY_FILE

    @property
    def activated_path(self) -> Path:
        return self._root / ADMINISTRATOR_ACTIVATED_FILE

    @staticmethod
    def _read_key(path: Path) -> Optional[str]:
        """Last non-empty line of a key file, or None."""
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Could not read key file %s: %s", path, e)
            return None
        lines = [line.strip() for line in lines if line.strip()]
        return lines[-1] if lines else None

    @staticmethod
    def _write_key(path: Path, key: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(key + "\n", encoding="utf-8")
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)

    def load_keys(self) -> KeyPair:
        admin = self._read_key(self.admin_key_path)
        user = self._read_key(self.user_key_path)
        return KeyPair(admin=admin, user=user, activated=self.activated_path.exists())

    def save_keys(self, admin: Optional[str], user: Optional[str],
                  *, admin_changed: bool = True) -> None:
        """
        Persist both keys.

        Writing a new administrator key removes the activation marker so
        the alert is shown again. A None user key removes user.key.
        """
        if admin is not None:
            self._write_key(self.admin_key_path, admin)
            if admin_changed:
                self.activated_path.unlink(missing_ok=True)
        if user is not None:
            self._write_key(self.user_key_path, user)
        else:
            self.user_key_path.unlink(missing_ok=True)

    def mark_activated(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        self.activated_path.touch(exist_ok=True)


class AccessState:
    """
    Process-wide key state, loaded once at startup.

    All key mutations go through this object so the in-memory view and
    the persisted files never disagree.
    """

    def __init__(self, key_store: KeyStore):
        self._key_store = key_store
        keys = key_store.load_keys()
        self._admin_key = keys.admin
        self._user_key = keys.user
        self._pending_activation = keys.admin is not None and not keys.activated
        if self._admin_key is None:
            self.regenerate_admin_key()

    @property
    def admin_key(self) -> str:
        return self._admin_key

    @property
    def user_key(self) -> Optional[str]:
        return self._user_key

    @property
    def pending_activation(self) -> bool:
        """True until the administrator key is first presented."""
        return self._pending_activation

    def regenerate_admin_key(self) -> str:
        """Create and persist a new administrator key; re-arms the alert."""
        self._admin_key = generate_key()
        self._key_store.save_keys(self._admin_key, self._user_key)
        self._pending_activation = True
        logger.info("Created administrator key")
        return self._admin_key

    def set_user_key(self, key: Optional[str]) -> None:
        """Set the user key, or remove it with None (reads become open)."""
        if key is not None:
            key = key.strip()
            if not key:
                raise ValueError("User key must not be empty")
        self._user_key = key
        self._key_store.save_keys(self._admin_key, key, admin_changed=False)
        logger.info("User key %s", "set" if key else "cleared")

    def claim_activation(self) -> bool:
        """
        Clear the pending flag in memory.

        Returns:
            True for the one caller that should persist the activation
        """
        if not self._pending_activation:
            return False
        self._pending_activation = False
        return True

    def persist_activation(self) -> None:
        try:
            self._key_store.mark_activated()
        except OSError as e:
            logger.error("Could not create '%s': %s", ADMINISTRATOR_ACTIVATED_FILE, e)
            return
        logger.info("Administrator key activated")

    def is_administrator(self, request_key: Optional[str]) -> bool:
        return request_key is not None and secrets.compare_digest(
            request_key.encode("utf-8"), self._admin_key.encode("utf-8"))

    def is_user(self, request_key: Optional[str]) -> bool:
        if self._user_key is None:
            return True
        return request_key is not None and secrets.compare_digest(
            request_key.encode("utf-8"), self._user_key.encode("utf-8"))


class AccessGate:
    """Decides whether a presented key may run an operation."""

    def __init__(self, state: AccessState):
        self._state = state

    @property
    def state(self) -> AccessState:
        return self._state

    def check(self, request_key: Optional[str], needs_admin: bool) -> Decision:
        """Pure decision, no side effects."""
        if self._state.is_administrator(request_key):
            return Decision(allowed=True, is_administrator=True)
        if not needs_admin and self._state.is_user(request_key):
            return Decision(allowed=True)
        return Decision(allowed=False)

    async def authorize(self, request_key: Optional[str], needs_admin: bool,
                        *, activate: bool = True) -> Decision:
        """
        Decide admission, recording the first administrator activation.

        With activate=False an administrator key is honoured but the
        activation stays pending.

        The marker file is written off the event loop; concurrent callers
        race only on the in-memory flag, so it is written once.
        """
        decision = self.check(request_key, needs_admin)
        if activate and decision.is_administrator and self._state.claim_activation():
            await asyncio.to_thread(self._state.persist_activation)
        return decision
