"""
Shared finance types for spendsync.

All synced entity dataclasses live here, together with the enums they use
and the datetime helpers every layer relies on. The storage layer persists
these objects, the codec turns them into remote documents, and the merger
mutates them in place. The types are the contract between them.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a globally unique record id."""
    return str(uuid.uuid4()).upper()


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string into an aware UTC datetime.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    if not s:
        return None
    return ensure_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as an ISO string in UTC (``None`` passes through)."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


# === Enums ===


class TransactionType(str, Enum):
    """Direction of a money movement. Values are the remote wire values."""

    EXPENSE = "Expense"
    INCOME = "Income"


class AccountType(str, Enum):
    """Kind of account a transaction is booked against."""

    CASH = "Cash"
    BANK = "Bank"
    CREDIT = "Credit"
    SAVINGS = "Savings"
    WALLET = "Wallet"

    @property
    def icon(self) -> str:
        return _ACCOUNT_ICONS[self]

    @property
    def color_hex(self) -> str:
        return _ACCOUNT_COLORS[self]


_ACCOUNT_ICONS = {
    AccountType.CASH: "banknote.fill",
    AccountType.BANK: "building.columns.fill",
    AccountType.CREDIT: "creditcard.fill",
    AccountType.SAVINGS: "dollarsign.circle.fill",
    AccountType.WALLET: "wallet.pass.fill",
}

_ACCOUNT_COLORS = {
    AccountType.CASH: "#34C759",
    AccountType.BANK: "#007AFF",
    AccountType.CREDIT: "#FF9500",
    AccountType.SAVINGS: "#5856D6",
    AccountType.WALLET: "#FF2D55",
}


class BudgetPeriod(str, Enum):
    """Length of a budget window."""

    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class UserPersona(str, Enum):
    STUDENT = "Student"
    PROFESSIONAL = "Professional"
    FAMILY = "Family"


class EntityType(str, Enum):
    """Every record type that takes part in sync.

    Declaration order is the pull order: categories and accounts must be in
    the local store before budgets and transactions reference them.
    """

    CATEGORY = "category"
    ACCOUNT = "account"
    BUDGET = "budget"
    TRANSACTION = "transaction"
    USER_PROFILE = "user_profile"

    @property
    def collection(self) -> str:
        """Name of the remote collection under ``users/{uid}``."""
        return _COLLECTIONS[self]

    @property
    def table(self) -> str:
        """Name of the local SQLite table."""
        return _TABLES[self]

    @property
    def model(self) -> type:
        return _MODELS[self]


_COLLECTIONS = {
    EntityType.CATEGORY: "categories",
    EntityType.ACCOUNT: "accounts",
    EntityType.BUDGET: "budgets",
    EntityType.TRANSACTION: "transactions",
    EntityType.USER_PROFILE: "profile",
}

_TABLES = {
    EntityType.CATEGORY: "categories",
    EntityType.ACCOUNT: "accounts",
    EntityType.BUDGET: "budgets",
    EntityType.TRANSACTION: "transactions",
    EntityType.USER_PROFILE: "user_profile",
}


# === Entities ===


@dataclass
class Category:
    """A spending or income category."""

    id: str = field(default_factory=new_id)
    name: str = ""
    icon: str = "tag.fill"
    color_hex: str = "#007AFF"
    is_expense_category: bool = True
    sort_order: int = 0
    is_default: bool = False
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    is_synced: bool = False


@dataclass
class Account:
    """A place money lives. Icon and color default from the account type."""

    id: str = field(default_factory=new_id)
    name: str = ""
    initial_balance: Decimal = Decimal("0")
    account_type: AccountType = AccountType.CASH
    icon: Optional[str] = None
    color_hex: Optional[str] = None
    currency_code: str = "INR"
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    is_synced: bool = False

    def __post_init__(self):
        if self.icon is None:
            self.icon = self.account_type.icon
        if self.color_hex is None:
            self.color_hex = self.account_type.color_hex


@dataclass
class Budget:
    """A spending limit over a period, optionally scoped to one category."""

    id: str = field(default_factory=new_id)
    amount: Decimal = Decimal("0")
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: datetime = field(default_factory=utc_now)
    alert_threshold: float = 0.8  # fraction of amount, 0..1
    is_active: bool = True
    category_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    is_synced: bool = False


@dataclass
class Transaction:
    """A single expense or income entry."""

    id: str = field(default_factory=new_id)
    amount: Decimal = Decimal("0")
    note: str = ""
    date: datetime = field(default_factory=utc_now)
    type: TransactionType = TransactionType.EXPENSE
    merchant_name: Optional[str] = None
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    is_synced: bool = False


@dataclass
class UserProfile:
    """Per-user preferences. The id is the signed-in user id."""

    id: str
    email: str = ""
    display_name: str = ""
    persona: UserPersona = UserPersona.PROFESSIONAL
    preferred_theme: str = "Light"
    currency_code: str = "INR"
    notifications_enabled: bool = True
    budget_alerts_enabled: bool = True
    daily_reminder_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    is_synced: bool = False


Entity = Union[Category, Account, Budget, Transaction, UserProfile]

_MODELS = {
    EntityType.CATEGORY: Category,
    EntityType.ACCOUNT: Account,
    EntityType.BUDGET: Budget,
    EntityType.TRANSACTION: Transaction,
    EntityType.USER_PROFILE: UserProfile,
}


def entity_type_of(entity: Any) -> EntityType:
    """Look up the EntityType for an entity instance."""
    for entity_type, model in _MODELS.items():
        if isinstance(entity, model):
            return entity_type
    raise TypeError(f"Not a synced entity: {type(entity).__name__}")


def mark_modified(entity: Entity, now: Optional[datetime] = None) -> Entity:
    """Record a local mutation: bump last_modified and clear is_synced."""
    entity.last_modified = ensure_utc(now) if now is not None else utc_now()
    entity.is_synced = False
    return entity


# === Sync Results ===


@dataclass
class MergeCounts:
    """What one merge pass did for one entity type."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0  # undecodable remote records
    conflicts: int = 0  # both sides edited, last-writer-wins decided

    @property
    def downloaded(self) -> int:
        return self.inserted + self.updated


@dataclass
class SyncConflict:
    """A record both sides edited since the last sync.

    Kept on the report for user visibility; the merger already resolved it
    with last-writer-wins.
    """

    entity_type: EntityType
    record_id: str
    local_modified: datetime
    remote_modified: datetime
    resolution: str  # "local_wins" or "remote_wins"


@dataclass
class SyncStatistics:
    """Running totals across sync passes."""

    total_uploaded: int = 0
    total_downloaded: int = 0
    total_conflicts_resolved: int = 0
    total_errors: int = 0
    last_sync_duration: float = 0.0  # seconds

    def reset(self) -> None:
        self.total_uploaded = 0
        self.total_downloaded = 0
        self.total_conflicts_resolved = 0
        self.total_errors = 0
        self.last_sync_duration = 0.0


@dataclass
class SyncReport:
    """Result of one full sync pass."""

    user_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    counts: Dict[EntityType, MergeCounts] = field(default_factory=dict)
    uploaded: int = 0
    conflicts: List[SyncConflict] = field(default_factory=list)

    @property
    def downloaded(self) -> int:
        return sum(c.downloaded for c in self.counts.values())

    @property
    def skipped(self) -> int:
        return sum(c.skipped for c in self.counts.values())

    @property
    def conflict_count(self) -> int:
        return sum(c.conflicts for c in self.counts.values())

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "started_at": format_datetime(self.started_at),
            "finished_at": format_datetime(self.finished_at),
            "duration": self.duration,
            "downloaded": self.downloaded,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
            "conflicts": self.conflict_count,
            "counts": {
                entity_type.collection: {
                    "inserted": c.inserted,
                    "updated": c.updated,
                    "unchanged": c.unchanged,
                    "skipped": c.skipped,
                    "conflicts": c.conflicts,
                }
                for entity_type, c in self.counts.items()
            },
        }
