from .base import SourcePage, OrderSource, InvoiceSource
from .woocommerce import WooCommerceOrderSource
from .zoho_books import ZohoBooksInvoiceSource

__all__ = [
    "SourcePage",
    "OrderSource",
    "InvoiceSource",
    "WooCommerceOrderSource",
    "ZohoBooksInvoiceSource",
]
