"""Record codec: local entities <-> remote documents.

Remote documents use camelCase keys. Datetime fields are written as the
remote store's native ``Timestamp``; ``lastModified`` is always written as
``SERVER_TIMESTAMP`` so the remote store stamps its own write time.

Remote timestamps arrive in several shapes depending on the backend and how
the document was written. ``to_datetime`` folds all of them into aware UTC
datetimes before anything compares them.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from spendsync.protocols import DataError
from spendsync.storage.documents import SERVER_TIMESTAMP, Timestamp, collection_path
from spendsync.types import (
    Account,
    AccountType,
    Budget,
    BudgetPeriod,
    Category,
    Entity,
    EntityType,
    Transaction,
    TransactionType,
    UserPersona,
    UserProfile,
    ensure_utc,
    entity_type_of,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

# Epoch numbers above this are milliseconds (year ~5138 in seconds)
_MILLIS_THRESHOLD = 100_000_000_000


def to_datetime(value: Any) -> datetime:
    """Normalize any supported remote timestamp into an aware UTC datetime.

    Accepts datetime (naive is UTC), Timestamp, ``{"seconds", "nanos"}`` and
    ``{"_seconds", "_nanoseconds"}`` mappings, ISO-8601 strings, and epoch
    seconds or milliseconds.

    Raises:
        DataError: If the value is missing or not a recognizable timestamp.
    """
    if value is None:
        raise DataError("missing timestamp")
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, Timestamp):
        try:
            return value.to_datetime()
        except OverflowError as e:
            raise DataError(f"timestamp out of range: {value!r}") from e
    if isinstance(value, Mapping):
        if "seconds" in value:
            seconds, nanos = value.get("seconds"), value.get("nanos", 0)
        elif "_seconds" in value:
            seconds, nanos = value.get("_seconds"), value.get("_nanoseconds", 0)
        else:
            raise DataError(f"unrecognized timestamp mapping: {sorted(value)}")
        try:
            return Timestamp(int(seconds), int(nanos or 0)).to_datetime()
        except (TypeError, ValueError, OverflowError) as e:
            raise DataError(f"invalid timestamp mapping: {dict(value)!r}") from e
    if isinstance(value, bool):
        raise DataError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= _MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise DataError(f"timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        if not value.strip():
            raise DataError("empty timestamp string")
        try:
            return parse_datetime(value.strip())
        except ValueError as e:
            raise DataError(f"invalid timestamp string: {value!r}") from e
    raise DataError(f"unsupported timestamp type: {type(value).__name__}")


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Read an amount written as a string, int or float.

    Raises:
        DataError: If the value is missing or not numeric.
    """
    if value is None or isinstance(value, bool):
        raise DataError(f"{field_name} is not numeric: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DataError(f"{field_name} is not numeric: {value!r}") from e
    if not result.is_finite():
        raise DataError(f"{field_name} is not finite: {value!r}")
    return result


def _enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        logger.debug(f"Unknown {enum_cls.__name__} value {value!r}, using {default.value}")
        return default


def _optional_datetime(value: Any) -> Optional[datetime]:
    return None if value is None else to_datetime(value)


def _timestamp(value: Optional[datetime]) -> Optional[Timestamp]:
    return None if value is None else Timestamp.from_datetime(value)


def _or_zero(value: Any) -> Any:
    return 0 if value is None else value


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# === Decoding ===


def _decode_category(doc: Mapping[str, Any], base: Dict[str, Any]) -> Category:
    return Category(
        name=doc.get("name") or "Unknown",
        icon=doc.get("icon") or "tag.fill",
        color_hex=doc.get("colorHex") or "#007AFF",
        is_expense_category=bool(doc.get("isExpenseCategory", True)),
        sort_order=int(doc.get("sortOrder") or 0),
        is_default=bool(doc.get("isDefault", False)),
        **base,
    )


def _decode_account(doc: Mapping[str, Any], base: Dict[str, Any]) -> Account:
    account_type = _enum(AccountType, doc.get("accountType"), AccountType.CASH)
    return Account(
        name=doc.get("name") or "Unknown",
        initial_balance=to_decimal(_or_zero(doc.get("initialBalance")), "initialBalance"),
        account_type=account_type,
        icon=doc.get("icon") or account_type.icon,
        color_hex=doc.get("colorHex") or account_type.color_hex,
        currency_code=doc.get("currencyCode") or "INR",
        **base,
    )


def _decode_budget(doc: Mapping[str, Any], base: Dict[str, Any]) -> Budget:
    threshold = doc.get("alertThreshold", 0.8)
    try:
        threshold = float(threshold)
    except (TypeError, ValueError) as e:
        raise DataError(f"alertThreshold is not numeric: {threshold!r}") from e
    if not math.isfinite(threshold):
        threshold = 0.8
    threshold = min(max(threshold, 0.0), 1.0)
    return Budget(
        amount=to_decimal(doc.get("amount"), "amount"),
        period=_enum(BudgetPeriod, doc.get("period"), BudgetPeriod.MONTHLY),
        start_date=_optional_datetime(doc.get("startDate")) or base["created_at"],
        alert_threshold=threshold,
        is_active=bool(doc.get("isActive", True)),
        category_id=_optional_str(doc.get("categoryId")),
        **base,
    )


def _decode_transaction(doc: Mapping[str, Any], base: Dict[str, Any]) -> Transaction:
    return Transaction(
        amount=to_decimal(doc.get("amount"), "amount"),
        note=doc.get("note") or "",
        date=_optional_datetime(doc.get("date")) or base["created_at"],
        type=_enum(TransactionType, doc.get("type"), TransactionType.EXPENSE),
        merchant_name=_optional_str(doc.get("merchantName")),
        category_id=_optional_str(doc.get("categoryId")),
        account_id=_optional_str(doc.get("accountId")),
        **base,
    )


def _decode_profile(doc: Mapping[str, Any], base: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        email=doc.get("email") or "",
        display_name=doc.get("displayName") or "",
        persona=_enum(UserPersona, doc.get("persona"), UserPersona.PROFESSIONAL),
        preferred_theme=doc.get("preferredTheme") or "Light",
        currency_code=doc.get("currencyCode") or "INR",
        notifications_enabled=bool(doc.get("notificationsEnabled", True)),
        budget_alerts_enabled=bool(doc.get("budgetAlertsEnabled", True)),
        daily_reminder_time=_optional_datetime(doc.get("dailyReminderTime")),
        **base,
    )


_DECODERS: Dict[EntityType, Callable[[Mapping[str, Any], Dict[str, Any]], Entity]] = {
    EntityType.CATEGORY: _decode_category,
    EntityType.ACCOUNT: _decode_account,
    EntityType.BUDGET: _decode_budget,
    EntityType.TRANSACTION: _decode_transaction,
    EntityType.USER_PROFILE: _decode_profile,
}


def decode(entity_type: EntityType, document: Any, doc_id: Optional[str] = None) -> Entity:
    """Decode a remote document into a typed entity marked as synced.

    Args:
        entity_type: Which entity the document holds.
        document: The remote document (a mapping with camelCase keys).
        doc_id: The document's own id, used when the body carries none.

    Raises:
        DataError: If the record cannot take part in sync (not a mapping,
            no id, no lastModified, non-numeric amount, bad timestamp).
    """
    if not isinstance(document, Mapping):
        raise DataError(f"{entity_type.collection} document is not a mapping")

    entity_id = document.get("id") or doc_id
    if not entity_id:
        raise DataError(f"{entity_type.collection} document has no id")
    if document.get("lastModified") is None:
        raise DataError(f"{entity_type.collection}/{entity_id} has no lastModified")

    last_modified = to_datetime(document["lastModified"])
    created_at = _optional_datetime(document.get("createdAt")) or last_modified
    base = {
        "id": str(entity_id),
        "created_at": created_at,
        "last_modified": last_modified,
        "is_synced": True,
    }
    try:
        return _DECODERS[entity_type](document, base)
    except DataError as e:
        raise DataError(f"{entity_type.collection}/{entity_id}: {e.detail}") from e
    except (TypeError, ValueError, OverflowError) as e:
        raise DataError(f"{entity_type.collection}/{entity_id}: {e}") from e


# === Encoding ===


def _encode_fields(entity: Entity) -> Dict[str, Any]:
    if isinstance(entity, Category):
        return {
            "name": entity.name,
            "icon": entity.icon,
            "colorHex": entity.color_hex,
            "isExpenseCategory": entity.is_expense_category,
            "sortOrder": entity.sort_order,
            "isDefault": entity.is_default,
        }
    if isinstance(entity, Account):
        return {
            "name": entity.name,
            "initialBalance": str(entity.initial_balance),
            "accountType": entity.account_type.value,
            "icon": entity.icon,
            "colorHex": entity.color_hex,
            "currencyCode": entity.currency_code,
        }
    if isinstance(entity, Budget):
        return {
            "amount": str(entity.amount),
            "period": entity.period.value,
            "startDate": _timestamp(entity.start_date),
            "alertThreshold": entity.alert_threshold,
            "isActive": entity.is_active,
            "categoryId": entity.category_id,
        }
    if isinstance(entity, Transaction):
        return {
            "amount": str(entity.amount),
            "note": entity.note,
            "date": _timestamp(entity.date),
            "type": entity.type.value,
            "merchantName": entity.merchant_name,
            "categoryId": entity.category_id,
            "accountId": entity.account_id,
        }
    if isinstance(entity, UserProfile):
        return {
            "email": entity.email,
            "displayName": entity.display_name,
            "persona": entity.persona.value,
            "preferredTheme": entity.preferred_theme,
            "currencyCode": entity.currency_code,
            "notificationsEnabled": entity.notifications_enabled,
            "budgetAlertsEnabled": entity.budget_alerts_enabled,
            "dailyReminderTime": _timestamp(entity.daily_reminder_time),
        }
    raise TypeError(f"Cannot encode {type(entity).__name__}")


def encode(entity: Entity) -> Dict[str, Any]:
    """Encode an entity as a remote document.

    ``lastModified`` is the SERVER_TIMESTAMP sentinel: the remote store
    replaces it with its own write time.
    """
    document = {"id": entity.id}
    document.update(_encode_fields(entity))
    document["createdAt"] = _timestamp(entity.created_at or utc_now())
    document["lastModified"] = SERVER_TIMESTAMP
    document["isSynced"] = True
    return document


def document_path(user_id: str, entity: Entity) -> str:
    """Collection path an entity is written to."""
    return collection_path(user_id, entity_type_of(entity).collection)
