"""Database models."""
from ledgersync.models.user import User
from ledgersync.models.bank_account import BankAccount
from ledgersync.models.transaction import Transaction
from ledgersync.models.category import CategoryRule, MainCategory, MccCategoryMapping, SubCategory

__all__ = [
    "User",
    "BankAccount",
    "Transaction",
    "CategoryRule",
    "MainCategory",
    "MccCategoryMapping",
    "SubCategory",
]
