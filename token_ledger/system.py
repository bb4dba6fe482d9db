"""
Token System Wiring

Builds every component of one token ledger from a LedgerConfig. Each
TokenSystem owns its own storage and state; nothing is shared between
instances.
"""

from typing import Optional, Tuple

from .amount import AmountType
from .audit import AuditTrail
from .auth import MintAuthority, MinterRegistry
from .config import LedgerConfig, get_config
from .events import EventDispatcher
from .ledger import TokenLedger
from .logging_config import get_logger, setup_logging
from .metadata import TokenMetadata
from .state import LedgerState
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage


METADATA_TABLE = "token_metadata"
METADATA_RECORD_ID = "token"


def create_storage(config: LedgerConfig) -> StorageInterface:
    """Storage backend selected by config.storage_backend"""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(config.database_path)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")


class TokenSystem:
    """Token ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        mint_authority: Optional[MintAuthority] = None
    ):
        self.config = config or get_config()
        setup_logging(self.config.log_level, log_format=self.config.log_format)
        self.logger = get_logger("token_ledger.system")

        self.storage = storage or create_storage(self.config)
        self.metadata, amount_bits = self._load_metadata()
        self.amount_type = AmountType(amount_bits)

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.event_dispatcher = EventDispatcher() if self.config.enable_events else None

        if mint_authority is None:
            minters = list(self.config.minters)
            if self.config.token_owner and self.config.token_owner not in minters:
                minters.insert(0, self.config.token_owner)
            mint_authority = MinterRegistry(minters, audit_trail=self.audit_trail, storage=self.storage)
        self.mint_authority = mint_authority

        self.state = LedgerState(
            self.storage,
            amount_type=self.amount_type,
            lock_stripes=self.config.lock_stripes
        )
        self.ledger = TokenLedger(
            self.state,
            self.mint_authority,
            audit_trail=self.audit_trail,
            event_dispatcher=self.event_dispatcher
        )

        self.logger.info(
            f"Token ledger ready: {self.metadata.symbol} "
            f"({self.amount_type.bits}-bit amounts, {self.config.storage_backend} storage)"
        )

    def _load_metadata(self) -> Tuple[TokenMetadata, int]:
        """
        Metadata and amount width stored by an earlier run win over
        configuration, so a persisted ledger keeps its name, symbol,
        decimals and the width its balances were written with.

        Returns:
            Tuple of (metadata, amount width in bits)
        """
        stored = self.storage.load(METADATA_TABLE, METADATA_RECORD_ID)
        if stored:
            metadata = TokenMetadata(
                name=stored['name'],
                symbol=stored['symbol'],
                decimals=int(stored['decimals'])
            )
            amount_bits = int(stored.get('amount_bits', self.config.amount_bits))
            if amount_bits != self.config.amount_bits:
                self.logger.warning(
                    f"Configured amount width of {self.config.amount_bits} bits ignored; "
                    f"ledger was created with {amount_bits}-bit amounts"
                )
            if 'amount_bits' not in stored:
                self.storage.save(METADATA_TABLE, METADATA_RECORD_ID,
                                  {**metadata.to_dict(), 'amount_bits': amount_bits})
            return metadata, amount_bits

        amount_bits = AmountType(self.config.amount_bits).bits
        metadata = TokenMetadata(
            name=self.config.token_name,
            symbol=self.config.token_symbol,
            decimals=self.config.token_decimals
        )
        self.storage.save(METADATA_TABLE, METADATA_RECORD_ID,
                          {**metadata.to_dict(), 'amount_bits': amount_bits})
        return metadata, amount_bits

    def close(self) -> None:
        self.storage.close()
