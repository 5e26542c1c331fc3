from .accounts import Account, AccountTransaction
from .inventory import StockKeepingUnit, StockMovement
from .invoices import Invoice, InvoiceLine, InvoiceEvent

__all__ = [
    'Account', 'AccountTransaction',
    'StockKeepingUnit', 'StockMovement',
    'Invoice', 'InvoiceLine', 'InvoiceEvent',
]
