"""
Units held on the fund ledger besides the asset and the share token.

The receivable unit doubles as the reference invoice provider.
"""

from .invoice import (
    InvoiceDetails,
    InvoiceProviderAdapter,
    LedgerInvoiceProvider,
    get_invoice_details,
    create_invoice_unit,
    compute_invoice_issuance,
    compute_invoice_payment,
    compute_invoice_cancellation,
    compute_invoice_transfer,
)

__all__ = [
    'InvoiceDetails',
    'InvoiceProviderAdapter',
    'LedgerInvoiceProvider',
    'get_invoice_details',
    'create_invoice_unit',
    'compute_invoice_issuance',
    'compute_invoice_payment',
    'compute_invoice_cancellation',
    'compute_invoice_transfer',
]
