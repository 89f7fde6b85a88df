from .tenancy import Business, Location
from .catalog import Unit, Product, Variation
from .inventory import StockRecord, DocumentSequence
from .ledger import Transaction, SellLine, PurchaseLine, StockAdjustmentLine, TransferLine

__all__ = [
    'Business', 'Location',
    'Unit', 'Product', 'Variation',
    'StockRecord', 'DocumentSequence',
    'Transaction', 'SellLine', 'PurchaseLine', 'StockAdjustmentLine', 'TransferLine',
]
