"""
Transfer Engine

Mint, transfer, approve, transfer_from and burn over a LedgerState. Every
operation is one atomic check-then-apply transition: it validates its
inputs, locks the entries it touches, checks preconditions in a fixed
order, and either applies all of its deltas or raises without writing.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .auth import MintAuthority
from .errors import (
    LedgerError, InsufficientBalance, InsufficientAllowance, UnauthorizedMint
)
from .events import (
    DomainEvent, EventDispatcher, EventPayload,
    create_transfer_event, create_approval_event, create_supply_event
)
from .logging_config import get_logger, log_action
from .state import LedgerState, balance_key, allowance_key, SUPPLY_KEY


class LedgerOperation(Enum):
    """Operations of the transfer engine"""
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"
    APPROVE = "approve"
    TRANSFER_FROM = "transfer_from"


@dataclass(frozen=True)
class LedgerReceipt:
    """
    Result of a successful operation.

    balances holds the post-operation balance of every account the
    operation touched; allowance is set for approve and transfer_from.
    """
    operation: LedgerOperation
    caller: str
    amount: int
    source: Optional[str] = None
    destination: Optional[str] = None
    balances: Dict[str, int] = field(default_factory=dict)
    allowance: Optional[int] = None
    total_supply: Optional[int] = None
    receipt_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TokenLedger:
    """
    Transfer engine over one ledger state.

    Every operation takes the authenticated caller explicitly; identity is
    never inferred.
    """

    def __init__(
        self,
        state: LedgerState,
        mint_authority: MintAuthority,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.state = state
        self.mint_authority = mint_authority
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.amounts = state.amount_type
        self.logger = get_logger("token_ledger.ledger")

    # Reads

    def balance_of(self, account: str) -> int:
        return self.state.balance_of(account)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowance(owner, spender)

    def total_supply(self) -> int:
        return self.state.total_supply()

    # Operations

    def mint(self, caller: str, to: str, amount: int) -> LedgerReceipt:
        """
        Create new tokens in the `to` account

        Args:
            caller: Authenticated caller; must be accepted by the mint authority
            to: Recipient account
            amount: Base units to create

        Returns:
            LedgerReceipt with the recipient balance and new total supply

        Raises:
            UnauthorizedMint: If the caller may not mint
            Overflow: If supply or the recipient balance would exceed the amount width
        """
        self._require_account(caller, "caller")
        self._require_account(to, "recipient")
        amount = self.amounts.validate(amount)

        if not self.mint_authority.is_minter(caller):
            raise self._rejected(LedgerOperation.MINT, caller, UnauthorizedMint(caller), to=to, amount=amount)

        with self.state.locks.hold(SUPPLY_KEY, balance_key(to)):
            supply = self.state.total_supply()
            balance = self.state.balance_of(to)
            try:
                new_supply = self.amounts.checked_add(supply, amount)
                new_balance = self.amounts.checked_add(balance, amount)
            except LedgerError as e:
                raise self._rejected(LedgerOperation.MINT, caller, e, to=to, amount=amount) from None

            with self.state.storage.atomic():
                self.state._write_supply(new_supply)
                self.state._write_balance(to, new_balance)

            self._audit(AuditEventType.TOKENS_MINTED, "account", to, caller, {
                "amount": amount,
                "balance": new_balance,
                "total_supply": new_supply
            })

        self._log(LedgerOperation.MINT, caller, f"account:{to}", amount)
        self._publish(create_supply_event(DomainEvent.MINT, to, amount, new_supply))
        return LedgerReceipt(
            operation=LedgerOperation.MINT,
            caller=caller,
            amount=amount,
            destination=to,
            balances={to: new_balance},
            total_supply=new_supply
        )

    def burn(self, caller: str, amount: int) -> LedgerReceipt:
        """
        Destroy tokens from the caller's own balance

        Raises:
            InsufficientBalance: If the caller holds less than amount
        """
        self._require_account(caller, "caller")
        amount = self.amounts.validate(amount)

        with self.state.locks.hold(SUPPLY_KEY, balance_key(caller)):
            balance = self.state.balance_of(caller)
            if balance < amount:
                raise self._rejected(LedgerOperation.BURN, caller,
                                     InsufficientBalance(caller, balance, amount), amount=amount)

            supply = self.state.total_supply()
            new_balance = self.amounts.checked_sub(balance, amount)
            new_supply = self.amounts.checked_sub(supply, amount)

            with self.state.storage.atomic():
                self.state._write_balance(caller, new_balance)
                self.state._write_supply(new_supply)

            self._audit(AuditEventType.TOKENS_BURNED, "account", caller, caller, {
                "amount": amount,
                "balance": new_balance,
                "total_supply": new_supply
            })

        self._log(LedgerOperation.BURN, caller, f"account:{caller}", amount)
        self._publish(create_supply_event(DomainEvent.BURN, caller, amount, new_supply))
        return LedgerReceipt(
            operation=LedgerOperation.BURN,
            caller=caller,
            amount=amount,
            source=caller,
            balances={caller: new_balance},
            total_supply=new_supply
        )

    def transfer(self, caller: str, to: str, amount: int) -> LedgerReceipt:
        """
        Move tokens from the caller to `to`

        Self-transfers and zero-amount transfers succeed and leave balances
        unchanged; both still produce a receipt and a transfer event.

        Raises:
            InsufficientBalance: If the caller holds less than amount
        """
        self._require_account(caller, "caller")
        self._require_account(to, "recipient")
        amount = self.amounts.validate(amount)

        with self.state.locks.hold(balance_key(caller), balance_key(to)):
            balance = self.state.balance_of(caller)
            if balance < amount:
                raise self._rejected(LedgerOperation.TRANSFER, caller,
                                     InsufficientBalance(caller, balance, amount), to=to, amount=amount)

            balances = self._move(caller, to, amount, balance)

            self._audit(AuditEventType.TRANSFER_COMPLETED, "account", caller, caller, {
                "from": caller,
                "to": to,
                "amount": amount
            })

        self._log(LedgerOperation.TRANSFER, caller, f"account:{to}", amount)
        self._publish(create_transfer_event(caller, to, amount))
        return LedgerReceipt(
            operation=LedgerOperation.TRANSFER,
            caller=caller,
            amount=amount,
            source=caller,
            destination=to,
            balances=balances
        )

    def approve(self, caller: str, spender: str, amount: int) -> LedgerReceipt:
        """
        Set the allowance of spender over the caller's balance.

        The allowance is replaced, not increased: approving 5 then 3
        leaves 3. No balance is required.
        """
        self._require_account(caller, "caller")
        self._require_account(spender, "spender")
        amount = self.amounts.validate(amount)

        with self.state.locks.hold(allowance_key(caller, spender)):
            with self.state.storage.atomic():
                self.state._write_allowance(caller, spender, amount)

            self._audit(AuditEventType.APPROVAL_SET, "allowance", caller, caller, {
                "owner": caller,
                "spender": spender,
                "amount": amount
            })

        self._log(LedgerOperation.APPROVE, caller, f"allowance:{caller}:{spender}", amount)
        self._publish(create_approval_event(caller, spender, amount))
        return LedgerReceipt(
            operation=LedgerOperation.APPROVE,
            caller=caller,
            amount=amount,
            source=caller,
            destination=spender,
            allowance=amount
        )

    def transfer_from(self, caller: str, owner: str, to: str, amount: int) -> LedgerReceipt:
        """
        Move tokens out of owner's balance on the caller's allowance

        The allowance is consulted even when caller == owner, so spending
        one's own tokens through this path requires a self-approval.

        Raises:
            InsufficientAllowance: Checked first
            InsufficientBalance: Checked second
        """
        self._require_account(caller, "caller")
        self._require_account(owner, "owner")
        self._require_account(to, "recipient")
        amount = self.amounts.validate(amount)

        with self.state.locks.hold(allowance_key(owner, caller), balance_key(owner), balance_key(to)):
            allowance = self.state.allowance(owner, caller)
            if allowance < amount:
                raise self._rejected(LedgerOperation.TRANSFER_FROM, caller,
                                     InsufficientAllowance(owner, caller, allowance, amount),
                                     owner=owner, to=to, amount=amount)

            balance = self.state.balance_of(owner)
            if balance < amount:
                raise self._rejected(LedgerOperation.TRANSFER_FROM, caller,
                                     InsufficientBalance(owner, balance, amount),
                                     owner=owner, to=to, amount=amount)

            new_allowance = self.amounts.checked_sub(allowance, amount)
            balances = self._move(owner, to, amount, balance, allowance=(caller, new_allowance))

            self._audit(AuditEventType.DELEGATED_TRANSFER_COMPLETED, "account", owner, caller, {
                "from": owner,
                "to": to,
                "spender": caller,
                "amount": amount,
                "remaining_allowance": new_allowance
            })

        self._log(LedgerOperation.TRANSFER_FROM, caller, f"account:{owner}", amount)
        self._publish(create_transfer_event(owner, to, amount, spender=caller))
        return LedgerReceipt(
            operation=LedgerOperation.TRANSFER_FROM,
            caller=caller,
            amount=amount,
            source=owner,
            destination=to,
            balances=balances,
            allowance=new_allowance
        )

    # Internals

    def _move(self, source: str, destination: str, amount: int, source_balance: int,
              allowance: Optional[Tuple[str, int]] = None) -> Dict[str, int]:
        """
        Apply a balance move under already-held locks. When source and
        destination are the same account nothing is written.
        """
        with self.state.storage.atomic():
            if allowance is not None:
                spender, new_allowance = allowance
                self.state._write_allowance(source, spender, new_allowance)

            if source == destination:
                return {source: source_balance}

            new_source = self.amounts.checked_sub(source_balance, amount)
            # Cannot overflow: destination + amount <= total supply
            new_destination = self.amounts.checked_add(self.state.balance_of(destination), amount)
            self.state._write_balance(source, new_source)
            self.state._write_balance(destination, new_destination)
            return {source: new_source, destination: new_destination}

    @staticmethod
    def _require_account(account: str, role: str) -> None:
        if not isinstance(account, str) or not account:
            raise ValueError(f"{role.capitalize()} must be a non-empty account id")

    def _rejected(self, operation: LedgerOperation, caller: str, error: LedgerError, **details) -> LedgerError:
        """Log and audit a failed precondition; the caller raises the returned error"""
        log_action(
            self.logger, "warning", f"{operation.value} rejected: {error}",
            user_id=caller, action=operation.value,
            extra={"code": error.code, **{k: str(v) for k, v in details.items()}}
        )
        self._audit(AuditEventType.OPERATION_REJECTED, "operation", operation.value, caller, {
            "code": error.code,
            "reason": str(error),
            **details
        })
        return error

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               caller: str, metadata: Dict) -> None:
        """
        Record an operation in the audit trail. Ledger writes are already
        committed when this runs, so an audit failure is logged and never
        raised; raising would invite a retry that applies the operation twice.
        """
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=caller
            )
        except Exception as e:
            self.logger.error(
                f"Failed to audit {event_type.value} for {entity_type}:{entity_id}: {e}",
                exc_info=True
            )

    def _log(self, operation: LedgerOperation, caller: str, resource: str, amount: int) -> None:
        log_action(
            self.logger, "info", f"{operation.value} applied",
            user_id=caller, action=operation.value, resource=resource,
            extra={"amount": str(amount)}
        )

    def _publish(self, event: EventPayload) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)
