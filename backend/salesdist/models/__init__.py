from .catalog import Branch, Product
from .stock import Stock, StockMovement
from .sales import SalesTransaction, SalesTransactionItem, Commission
from .visits import Visit
from .sequences import ReferenceSequence

__all__ = [
    'Branch', 'Product',
    'Stock', 'StockMovement',
    'SalesTransaction', 'SalesTransactionItem', 'Commission',
    'Visit',
    'ReferenceSequence',
]
