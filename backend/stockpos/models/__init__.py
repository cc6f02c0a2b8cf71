from .catalog import Product, Stock, stock_status, STATUS_OK, STATUS_LOW, STATUS_OUT
from .sales import Sale, SaleLine

__all__ = [
    'Product', 'Stock', 'stock_status', 'STATUS_OK', 'STATUS_LOW', 'STATUS_OUT',
    'Sale', 'SaleLine',
]
