"""Ledger services: transactions, balances, debts, accounts and categories."""

from moneymoo.ledger.accounts import AccountService
from moneymoo.ledger.categories import CategoryService
from moneymoo.ledger.debts import DebtLedger
from moneymoo.ledger.reconciler import AccountBalanceReconciler
from moneymoo.ledger.transactions import TransactionStore

__all__ = [
    "AccountBalanceReconciler",
    "AccountService",
    "CategoryService",
    "DebtLedger",
    "TransactionStore",
]
