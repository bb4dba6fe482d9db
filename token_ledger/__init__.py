"""
Token Ledger

Single-node accounting core for a fungible token: balances, allowances and
total supply with overflow-checked integer arithmetic, atomic
check-then-apply operations and a hash-chained audit trail.
"""

__version__ = "1.0.0"
