"""Order/invoice reconciliation service.

Matches WooCommerce orders against Zoho Books invoices for a period and keeps
an auditable history of reconciliation reports.
"""

__all__: list[str] = []
