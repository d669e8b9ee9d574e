"""Loyalty ledger service exports."""

from .balance_engine import (  # noqa: F401
    BalanceEngine,
    TransactionMetadata,
    TransactionResult,
)
from .directory import CustomerDirectory  # noqa: F401
from .expiration import (  # noqa: F401
    ExpirationSweeper,
    IntegrityWarning,
    SweepResult,
)
from .ledger import (  # noqa: F401
    AvailableBalance,
    CustomerHistory,
    ExpiringSummary,
    LedgerQueries,
    RecentTransaction,
)
from .pending_discounts import PendingDiscountQueue, PendingDiscountView  # noqa: F401
from .program_config import ProgramConfig, ProgramConfigCache  # noqa: F401
from .purge import LedgerRetentionPurge, PurgeResult  # noqa: F401
