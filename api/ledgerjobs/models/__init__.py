from ledgerjobs.models.account import BankAccount, Transaction, TransactionAttachment, TransactionCategory
from ledgerjobs.models.inbox import InboxItem
from ledgerjobs.models.recurring import RecurringTransaction

__all__ = [
    "BankAccount",
    "InboxItem",
    "RecurringTransaction",
    "Transaction",
    "TransactionAttachment",
    "TransactionCategory",
]
