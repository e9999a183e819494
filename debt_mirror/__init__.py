"""
Debt Mirror - Data Layer

Tracks debts and income for a person who is either an anonymous guest
(data held on-device) or a signed-in account holder (data held in the
cloud store).

DESIGN PRINCIPLES:
1. One writer at a time, no silent merges
2. The ledger is the source of truth for a debt's balance
3. Guest data migrates exactly once, and is only cleared after success
4. Session expiry is derived on every read, never cached
5. Storage backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Debt Mirror Team"
