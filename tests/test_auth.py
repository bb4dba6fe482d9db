"""
Tests for mint authorization
"""

import pytest

from token_ledger.auth import MintAuthority, OwnerMintAuthority, MinterRegistry
from token_ledger.audit import AuditTrail, AuditEventType
from token_ledger.storage import InMemoryStorage


class TestOwnerMintAuthority:

    def test_only_owner_may_mint(self):
        authority = OwnerMintAuthority("0xdeployer")

        assert isinstance(authority, MintAuthority)
        assert authority.is_minter("0xdeployer")
        assert not authority.is_minter("0xalice")
        assert not authority.is_minter("")

    def test_owner_required(self):
        with pytest.raises(ValueError):
            OwnerMintAuthority("")


class TestMinterRegistry:
    """Test grant and revoke of the mint permission"""

    def setup_method(self):
        self.audit = AuditTrail(InMemoryStorage())
        self.registry = MinterRegistry(["0xdeployer"], audit_trail=self.audit)

    def test_initial_minters(self):
        assert self.registry.is_minter("0xdeployer")
        assert not self.registry.is_minter("0xalice")
        assert self.registry.list_minters() == ["0xdeployer"]

    def test_grant(self):
        """Test that granting adds a minter and is audited"""
        assert self.registry.grant("0xalice", granted_by="0xdeployer")
        assert not self.registry.grant("0xalice", granted_by="0xdeployer")

        assert self.registry.is_minter("0xalice")
        assert self.registry.list_minters() == ["0xalice", "0xdeployer"]
        events = self.audit.get_events_by_type(AuditEventType.MINTER_GRANTED)
        assert len(events) == 1
        assert events[0].entity_id == "0xalice"
        assert events[0].user_id == "0xdeployer"

    def test_revoke(self):
        """Test that revoking removes a minter and is audited"""
        assert self.registry.revoke("0xdeployer", revoked_by="0xdeployer")
        assert not self.registry.revoke("0xdeployer")

        assert not self.registry.is_minter("0xdeployer")
        assert len(self.audit.get_events_by_type(AuditEventType.MINTER_REVOKED)) == 1

    def test_rejects_invalid_ids(self):
        with pytest.raises(ValueError):
            self.registry.grant("")
        with pytest.raises(ValueError):
            MinterRegistry([None])

    def test_without_audit_trail(self):
        registry = MinterRegistry()
        assert registry.grant("0xalice")
        assert registry.list_minters() == ["0xalice"]


class TestMinterRegistryPersistence:
    """Test that the minter set is kept in storage"""

    def setup_method(self):
        self.storage = InMemoryStorage()

    def test_seeds_fresh_storage(self):
        MinterRegistry(["0xdeployer"], storage=self.storage)

        reloaded = MinterRegistry(storage=self.storage)
        assert reloaded.list_minters() == ["0xdeployer"]

    def test_grant_and_revoke_persist(self):
        registry = MinterRegistry(["0xdeployer"], storage=self.storage)
        registry.grant("0xalice")
        registry.revoke("0xdeployer")

        reloaded = MinterRegistry(["0xdeployer"], storage=self.storage)

        assert reloaded.list_minters() == ["0xalice"]
        assert not reloaded.is_minter("0xdeployer")

    def test_empty_stored_set_is_kept(self):
        """Test that revoking every minter is not undone by the initial seed"""
        registry = MinterRegistry(["0xdeployer"], storage=self.storage)
        registry.revoke("0xdeployer")

        assert MinterRegistry(["0xdeployer"], storage=self.storage).list_minters() == []
