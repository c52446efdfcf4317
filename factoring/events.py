"""
events.py - Audit Event Catalogue

Event names and parameter keys are a stable contract with external indexers.
Engines attach events to the PendingTransaction that causes them, so an event
is recorded if and only if its transaction applies.
"""

from .core import AuditEvent


# Receivable lifecycle
INVOICE_APPROVED = "InvoiceApproved"
INVOICE_FUNDED = "InvoiceFunded"
INVOICE_PAID = "InvoicePaid"
INVOICE_KICKBACK_AMOUNT_SENT = "InvoiceKickbackAmountSent"
INVOICE_IMPAIRED = "InvoiceImpaired"
INVOICE_UNFACTORED = "InvoiceUnfactored"
ACTIVE_PAID_INVOICES_RECONCILED = "ActivePaidInvoicesReconciled"

# Vault
DEPOSIT = "Deposit"
WITHDRAW = "Withdraw"

# Redemption queue
REDEMPTION_QUEUED = "RedemptionQueued"
REDEMPTION_CANCELLED = "RedemptionCancelled"
REDEMPTION_PROCESSED = "RedemptionProcessed"
QUEUE_COMPACTED = "QueueCompacted"
QUEUE_CLEARED = "QueueCleared"

# Configuration
PROTOCOL_FEE_BPS_CHANGED = "ProtocolFeeBpsChanged"
ADMIN_FEE_BPS_CHANGED = "AdminFeeBpsChanged"
TARGET_YIELD_CHANGED = "TargetYieldChanged"
GRACE_PERIOD_DAYS_CHANGED = "GracePeriodDaysChanged"
APPROVAL_DURATION_CHANGED = "ApprovalDurationChanged"
UNDERWRITER_CHANGED = "UnderwriterChanged"
PROTOCOL_FEE_RECEIVER_CHANGED = "ProtocolFeeReceiverChanged"
IMPAIR_RESERVE_CHANGED = "ImpairReserveChanged"

# Fee balances
PROTOCOL_FEES_WITHDRAWN = "ProtocolFeesWithdrawn"
ADMIN_FEES_WITHDRAWN = "AdminFeesWithdrawn"
SPREAD_GAINS_WITHDRAWN = "SpreadGainsWithdrawn"


def audit_event(name: str, **params) -> AuditEvent:
    """Build an AuditEvent keeping the keyword order as the parameter order."""
    return AuditEvent(name, tuple(params.items()))
