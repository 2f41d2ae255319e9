"""Database package for MoneyUnify payment records."""
from .connection import Database
from .models import Base, PaymentEventRow, PaymentRecordRow
from .store import InMemoryPaymentStore, PaymentRecordStore, SqlAlchemyPaymentStore

__all__ = [
    "Base",
    "Database",
    "InMemoryPaymentStore",
    "PaymentEventRow",
    "PaymentRecordRow",
    "PaymentRecordStore",
    "SqlAlchemyPaymentStore",
]
