# Models module
from shopbooks.models.company import Company
from shopbooks.models.party import Party, PartyType
from shopbooks.models.item import Item
from shopbooks.models.document import (
    Document,
    DocumentItem,
    PaymentHistoryEntry,
    DocumentConversion,
    DocumentKind,
    OrderType,
    TaxMode,
    DocumentStatus,
    PaymentStatus,
    PaymentMethod,
)
from shopbooks.models.document_sequence import DocumentSequence
from shopbooks.models.stock_adjustment import (
    StockAdjustment,
    StockOperation,
    StockAdjustmentStatus,
    StockChannel,
)

__all__ = [
    "Company",
    "Party",
    "PartyType",
    "Item",
    "Document",
    "DocumentItem",
    "PaymentHistoryEntry",
    "DocumentConversion",
    "DocumentKind",
    "OrderType",
    "TaxMode",
    "DocumentStatus",
    "PaymentStatus",
    "PaymentMethod",
    "DocumentSequence",
    "StockAdjustment",
    "StockOperation",
    "StockAdjustmentStatus",
    "StockChannel",
]
