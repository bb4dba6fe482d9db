"""
Mint Authorization

The ledger never authenticates callers itself. The identity layer hands it
an already-authenticated caller id, and a MintAuthority answers the single
question the ledger needs: may this caller mint?
"""

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger
from .storage import StorageInterface


MINTERS_TABLE = "token_minters"
MINTERS_RECORD_ID = "registry"


class MintAuthority(ABC):
    """Decides whether an authenticated caller may mint"""

    @abstractmethod
    def is_minter(self, caller: str) -> bool:
        pass


class OwnerMintAuthority(MintAuthority):
    """Only the deploying owner may mint"""

    def __init__(self, owner: str):
        if not owner:
            raise ValueError("Owner id is required")
        self.owner = owner

    def is_minter(self, caller: str) -> bool:
        return caller == self.owner


class MinterRegistry(MintAuthority):
    """
    Mutable set of accounts holding the mint permission.

    Grants and revocations are recorded in the audit trail when one is
    supplied. With a storage backend the set is persisted: a stored set
    wins over the initial minters, which only seed a fresh ledger.
    """

    def __init__(self, minters: Optional[Iterable[str]] = None,
                 audit_trail: Optional[AuditTrail] = None,
                 storage: Optional[StorageInterface] = None):
        self._minters = set()
        self._lock = threading.Lock()
        self.audit_trail = audit_trail
        self.storage = storage
        self.logger = get_logger("token_ledger.auth")

        stored = storage.load(MINTERS_TABLE, MINTERS_RECORD_ID) if storage else None
        initial = stored['minters'] if stored is not None else (minters or ())
        for minter in initial:
            self._require_id(minter)
            self._minters.add(minter)

        if storage and stored is None:
            self._persist()

    @staticmethod
    def _require_id(account: str) -> None:
        if not isinstance(account, str) or not account:
            raise ValueError("Minter id must be a non-empty string")

    def _persist(self) -> None:
        # caller holds self._lock, or construction is not yet shared
        if self.storage:
            self.storage.save(MINTERS_TABLE, MINTERS_RECORD_ID, {'minters': sorted(self._minters)})

    def is_minter(self, caller: str) -> bool:
        with self._lock:
            return caller in self._minters

    def grant(self, account: str, granted_by: Optional[str] = None) -> bool:
        """Grant mint permission. Returns False if already granted."""
        self._require_id(account)
        with self._lock:
            if account in self._minters:
                return False
            self._minters.add(account)
            self._persist()

        self.logger.info(f"Mint permission granted to {account}")
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.MINTER_GRANTED,
                entity_type="minter",
                entity_id=account,
                user_id=granted_by
            )
        return True

    def revoke(self, account: str, revoked_by: Optional[str] = None) -> bool:
        """Revoke mint permission. Returns False if it was not held."""
        with self._lock:
            if account not in self._minters:
                return False
            self._minters.discard(account)
            self._persist()

        self.logger.info(f"Mint permission revoked from {account}")
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.MINTER_REVOKED,
                entity_type="minter",
                entity_id=account,
                user_id=revoked_by
            )
        return True

    def list_minters(self) -> List[str]:
        with self._lock:
            return sorted(self._minters)
