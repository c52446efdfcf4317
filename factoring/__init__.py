"""
factoring - Invoice-Factoring Fund on a Double-Entry Ledger

Depositors pool a reference asset and receive shares; the pool advances cash
against receivables, earns interest and fees when they are paid, absorbs
impairments, and pays redemptions directly or through a FIFO queue.

Usage:
    from factoring import Ledger, FactoringFund, FundConfig, asset
    from factoring import create_invoice_unit, compute_invoice_issuance, compute_invoice_payment

    ledger = Ledger("fund", datetime(2025, 1, 1))
    ledger.register_unit(asset("USDC", "USD Coin"))
    for wallet in ("alice", "supplier", "acme"):
        ledger.register_wallet(wallet)

    config = FundConfig("Invoice Fund", "USDC", "pool", "owner", "uw", "treasury")
    fund = FactoringFund.create(ledger, config, "BFT")
    fund.deposit("alice", Decimal("100000000"))

    inv = create_invoice_unit("INV-001", "acme", "USDC", Decimal("100000000"), datetime(2025, 1, 31))
    ledger.execute(compute_invoice_issuance(ledger, inv, "supplier"))
    fund.approve_invoice("uw", "INV-001", 1000, 0, 8000, 30)
    fund.fund_invoice("supplier", "INV-001", 8000)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    AuditEvent,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    asset,
    SYSTEM_WALLET,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_FUND_SHARE,
    UNIT_TYPE_INVOICE,
    BPS_DENOMINATOR,
    # Ledger errors
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    # Fund errors
    FundError,
    AuthorizationError,
    ValidationError,
    StateError,
    ResourceError,
    BoundsError,
    NotAuthorized,
    InvalidAddress,
    InvalidOwner,
    InvalidReceiver,
    InvalidPercentage,
    InvalidRedemptionType,
    InvalidAmount,
    InvoiceTokenMismatch,
    BelowMinInvestment,
    InvoiceNotFound,
    InvoiceNotApproved,
    InvoiceAlreadyFunded,
    ApprovalExpired,
    InvoiceCanceled,
    InvoiceAlreadyPaid,
    InvoiceCreditorChanged,
    InvoiceAmountChanged,
    InvoiceNotFunded,
    InvoiceAlreadyImpaired,
    InvoiceNotImpairable,
    ReentrancyError,
    InsufficientLiquidity,
    FeesExceedFundedAmount,
    QueueEmpty,
    AmountExceedsQueuedShares,
    AmountExceedsQueuedAssets,
    InsufficientCommitment,
    InvalidQueueIndex,
)

# Ledger
from .ledger import Ledger

# Receivables
from .units import (
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

# Fees
from .fees import (
    FeeParams,
    TargetFees,
    AccruedFees,
    KickbackResult,
    validate_bps,
    whole_days_between,
    calculate_target_fees,
    calculate_fee_cap,
    calculate_accrued_fees,
    calculate_kickback,
)

# Fund state
from .state import (
    FundConfig,
    FundState,
    InvoiceStatus,
    InvoiceApproval,
    ImpairmentDetails,
    Settlement,
    load_fund,
    to_state_dict,
    create_fund_unit,
)

# Redemption queue
from .redemption_queue import (
    RedemptionQueue,
    QueuedRedemption,
    QueueStats,
    EMPTY_REDEMPTION,
)

# Capital account
from .capital import (
    CapitalAccount,
    CapitalSnapshot,
    FundInfo,
    calculate_capital_account,
    calculate_realized_gain_loss,
    price_per_share,
    get_fund_info,
)

# Shares and access
from .shares import ShareAccounting, convert_to_shares, convert_to_assets, preview_withdraw
from .access import AccessControl, AllowList, OpenPermissions, Permissions

# Engines
from .invoice_lifecycle import (
    compute_approve_invoice,
    compute_fund_invoice,
    compute_unfactor_invoice,
    preview_target_fees,
    get_invoice_status,
)
from .reconciliation import (
    compute_reconcile_active_paid_invoices,
    calculate_kickback_for_invoice,
    check_upkeep,
)
from .impairment import (
    compute_impair_invoice,
    compute_set_impair_reserve,
    impairable_invoices,
)
from .liquidity import (
    compute_deposit,
    compute_redeem,
    compute_withdraw,
    compute_redeem_and_or_queue,
    compute_withdraw_and_or_queue,
    compute_process_redemption_queue,
    compute_cancel_queued_redemption,
    compute_compact_queue,
    compute_clear_queue,
    max_redeem,
    max_withdraw,
)
from .config import FeeConfiguration

# Facade and automation
from .fund import FactoringFund
from .keeper import FundKeeper
from .fund_manager import FundManager, Commitment

__all__ = [
    # Core
    'LedgerView', 'Move', 'AuditEvent', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'asset',
    'SYSTEM_WALLET', 'UNIT_TYPE_ASSET', 'UNIT_TYPE_FUND_SHARE', 'UNIT_TYPE_INVOICE',
    'BPS_DENOMINATOR',
    # Ledger errors
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    # Fund errors
    'FundError', 'AuthorizationError', 'ValidationError', 'StateError',
    'ResourceError', 'BoundsError',
    'NotAuthorized', 'InvalidAddress', 'InvalidOwner', 'InvalidReceiver',
    'InvalidPercentage', 'InvalidRedemptionType', 'InvalidAmount', 'InvoiceTokenMismatch',
    'BelowMinInvestment',
    'InvoiceNotFound', 'InvoiceNotApproved', 'InvoiceAlreadyFunded', 'ApprovalExpired',
    'InvoiceCanceled', 'InvoiceAlreadyPaid', 'InvoiceCreditorChanged', 'InvoiceAmountChanged',
    'InvoiceNotFunded', 'InvoiceAlreadyImpaired', 'InvoiceNotImpairable', 'ReentrancyError',
    'InsufficientLiquidity', 'FeesExceedFundedAmount', 'QueueEmpty',
    'AmountExceedsQueuedShares', 'AmountExceedsQueuedAssets', 'InsufficientCommitment',
    'InvalidQueueIndex',
    # Ledger
    'Ledger',
    # Receivables
    'InvoiceDetails', 'InvoiceProviderAdapter', 'LedgerInvoiceProvider', 'get_invoice_details',
    'create_invoice_unit', 'compute_invoice_issuance', 'compute_invoice_payment',
    'compute_invoice_cancellation', 'compute_invoice_transfer',
    # Fees
    'FeeParams', 'TargetFees', 'AccruedFees', 'KickbackResult', 'validate_bps',
    'whole_days_between', 'calculate_target_fees', 'calculate_fee_cap',
    'calculate_accrued_fees', 'calculate_kickback',
    # Fund state
    'FundConfig', 'FundState', 'InvoiceStatus', 'InvoiceApproval', 'ImpairmentDetails',
    'Settlement', 'load_fund', 'to_state_dict', 'create_fund_unit',
    # Redemption queue
    'RedemptionQueue', 'QueuedRedemption', 'QueueStats', 'EMPTY_REDEMPTION',
    # Capital
    'CapitalAccount', 'CapitalSnapshot', 'FundInfo', 'calculate_capital_account',
    'calculate_realized_gain_loss', 'price_per_share', 'get_fund_info',
    # Shares and access
    'ShareAccounting', 'convert_to_shares', 'convert_to_assets', 'preview_withdraw',
    'AccessControl', 'AllowList', 'OpenPermissions', 'Permissions',
    # Engines
    'compute_approve_invoice', 'compute_fund_invoice', 'compute_unfactor_invoice',
    'preview_target_fees', 'get_invoice_status',
    'compute_reconcile_active_paid_invoices', 'calculate_kickback_for_invoice', 'check_upkeep',
    'compute_impair_invoice', 'compute_set_impair_reserve', 'impairable_invoices',
    'compute_deposit', 'compute_redeem', 'compute_withdraw',
    'compute_redeem_and_or_queue', 'compute_withdraw_and_or_queue',
    'compute_process_redemption_queue', 'compute_cancel_queued_redemption',
    'compute_compact_queue', 'compute_clear_queue', 'max_redeem', 'max_withdraw',
    'FeeConfiguration',
    # Facade and automation
    'FactoringFund', 'FundKeeper', 'FundManager', 'Commitment',
]

__version__ = '1.0.0'
