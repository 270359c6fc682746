"""
Money Moo - Ledger Engine

The consistency core of a personal-finance tracker. It keeps account
balances, transaction history and debt payoff state in agreement while a
read-through cache sits in front of the data store.

DESIGN PRINCIPLES:
1. Validate and sanitize before anything touches storage
2. Every multi-step mutation runs inside one unit of work
3. Derived state (balances, debt status) is recomputable from source records
4. Cache is advisory, storage is authoritative
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Money Moo Team"
