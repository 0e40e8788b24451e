"""
Translation of remote API items into local field dicts.

Each map_* function is pure: it takes one raw item and returns a MappedRecord
holding the external id, the synchronized fields, and the external ids of any
referenced entities. Resolving references against the database happens in
ingestion.upserts. Malformed values raise MappingError.
"""
import re
from datetime import date, datetime, time, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, NamedTuple, Optional

from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date
from django.utils.dateparse import parse_datetime as django_parse_datetime

from portfolio.models import LeaseStatus, UnitStatus, WorkOrderPriority, WorkOrderStatus


class MappingError(ValueError):
    """An item cannot be translated (missing id, unparseable value)."""


class SkipRecord(Exception):
    """An item refers to an entity that has not been ingested."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MappedRecord(NamedTuple):
    external_id: str
    fields: dict
    references: Dict[str, Optional[str]]


# Field holding the record's own id, tried before the generic "id".
ID_FIELDS = {
    "properties": "property_id",
    "units": "unit_id",
    "vendors": "vendor_id",
    "leases": "lease_id",
    "work_orders": "work_order_id",
    "expenses": "txn_id",
}

# Tried in order; the first present value wins.
GL_ACCOUNT_ALIASES = ("account_number", "gl_account_number", "account")

_GL_PREFIX = re.compile(r"^(\d+)")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_US_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y")

UNIT_STATUSES = {
    "occupied": UnitStatus.OCCUPIED,
    "rented": UnitStatus.OCCUPIED,
    "leased": UnitStatus.OCCUPIED,
    "vacant": UnitStatus.VACANT,
    "available": UnitStatus.VACANT,
    "empty": UnitStatus.VACANT,
    "not ready": UnitStatus.NOT_READY,
    "not_ready": UnitStatus.NOT_READY,
    "maintenance": UnitStatus.NOT_READY,
}

LEASE_STATUSES = {
    "active": LeaseStatus.ACTIVE,
    "current": LeaseStatus.ACTIVE,
    "in_progress": LeaseStatus.ACTIVE,
    "past": LeaseStatus.PAST,
    "expired": LeaseStatus.PAST,
    "ended": LeaseStatus.PAST,
    "terminated": LeaseStatus.PAST,
    "future": LeaseStatus.FUTURE,
    "pending": LeaseStatus.FUTURE,
    "upcoming": LeaseStatus.FUTURE,
}

WORK_ORDER_STATUSES = {
    "open": WorkOrderStatus.OPEN,
    "new": WorkOrderStatus.OPEN,
    "pending": WorkOrderStatus.OPEN,
    "submitted": WorkOrderStatus.OPEN,
    "in_progress": WorkOrderStatus.IN_PROGRESS,
    "in progress": WorkOrderStatus.IN_PROGRESS,
    "assigned": WorkOrderStatus.IN_PROGRESS,
    "working": WorkOrderStatus.IN_PROGRESS,
    "scheduled": WorkOrderStatus.IN_PROGRESS,
    "completed": WorkOrderStatus.COMPLETED,
    "done": WorkOrderStatus.COMPLETED,
    "closed": WorkOrderStatus.COMPLETED,
    "resolved": WorkOrderStatus.COMPLETED,
    "cancelled": WorkOrderStatus.CANCELLED,
    "canceled": WorkOrderStatus.CANCELLED,
    "rejected": WorkOrderStatus.CANCELLED,
}

WORK_ORDER_PRIORITIES = {
    "low": WorkOrderPriority.LOW,
    "minor": WorkOrderPriority.LOW,
    "normal": WorkOrderPriority.NORMAL,
    "medium": WorkOrderPriority.NORMAL,
    "standard": WorkOrderPriority.NORMAL,
    "high": WorkOrderPriority.HIGH,
    "urgent": WorkOrderPriority.HIGH,
    "important": WorkOrderPriority.HIGH,
    "emergency": WorkOrderPriority.EMERGENCY,
    "critical": WorkOrderPriority.EMERGENCY,
    "immediate": WorkOrderPriority.EMERGENCY,
}


def _lookup(vocabulary: dict, value, default):
    if value is None:
        return default
    return vocabulary.get(str(value).strip().lower(), default)


def map_unit_status(value) -> str:
    return _lookup(UNIT_STATUSES, value, UnitStatus.VACANT)


def map_lease_status(value) -> str:
    return _lookup(LEASE_STATUSES, value, LeaseStatus.ACTIVE)


def map_work_order_status(value) -> str:
    return _lookup(WORK_ORDER_STATUSES, value, WorkOrderStatus.OPEN)


def map_work_order_priority(value) -> str:
    return _lookup(WORK_ORDER_PRIORITIES, value, WorkOrderPriority.NORMAL)


def first_present(item: dict, keys, default=None):
    """First scalar, non-empty value among `keys`."""
    for key in keys:
        value = item.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return default


def _text(item: dict, keys, default: str = "", max_length: int = 255) -> str:
    value = first_present(item, keys, default)
    return str(value).strip()[:max_length]


def extract_external_id(resource_type: str, item) -> Optional[str]:
    if not isinstance(item, dict):
        return None
    value = first_present(item, (ID_FIELDS.get(resource_type, "id"), "id"))
    return str(value) if value is not None else None


def require_external_id(resource_type: str, item) -> str:
    if not isinstance(item, dict):
        raise MappingError(f"Expected an object for {resource_type}, got {type(item).__name__}")
    external_id = extract_external_id(resource_type, item)
    if external_id is None:
        raise MappingError(f"{resource_type} record has no external id")
    return external_id


def reference_id(item: dict, key: str, nested_key: str) -> Optional[str]:
    """External id of a referenced entity, from `key` or `nested_key.id`."""
    value = item.get(key)
    if value in (None, ""):
        nested = item.get(nested_key)
        value = nested.get("id") if isinstance(nested, dict) else None
    return str(value) if value not in (None, "") else None


def extract_gl_account_number(item: dict) -> str:
    """Numeric GL account from the first alias present; "6210 - Water" becomes "6210"."""
    value = first_present(item, GL_ACCOUNT_ALIASES)
    if value is None:
        return ""
    match = _GL_PREFIX.match(str(value).strip())
    return match.group(1) if match else str(value).strip()[:32]


def parse_amount(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MappingError(f"Invalid amount: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value)).quantize(Decimal("0.01"))
    cleaned = _NON_NUMERIC.sub("", str(value))
    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise MappingError(f"Invalid amount: {value!r}")


def parse_decimal(value, places: str = "0.1") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value).strip()).quantize(Decimal(places))
    except InvalidOperation:
        raise MappingError(f"Invalid number: {value!r}")


def parse_int(value) -> Optional[int]:
    if value is None or value == "" or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        raise MappingError(f"Invalid integer: {value!r}")
    try:
        return int(Decimal(str(value).replace(",", "").strip()))
    except (InvalidOperation, ValueError):
        raise MappingError(f"Invalid integer: {value!r}")


def parse_bool(value, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1", "y")
    return bool(value)


def parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        parsed = django_parse_date(text)
        if parsed is None:
            parsed_dt = django_parse_datetime(text)
            parsed = parsed_dt.date() if parsed_dt else None
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in _US_DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise MappingError(f"Invalid date: {value!r}")
    return parsed


def parse_datetime(value) -> Optional[datetime]:
    """Aware datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = django_parse_datetime(text)
        except ValueError:
            parsed = None
        if parsed is None:
            day = parse_date(text)
            parsed = datetime.combine(day, time.min)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def is_visible(item: dict) -> bool:
    visibility = item.get("visibility")
    if visibility is None:
        return parse_bool(item.get("is_active"), default=True)
    return str(visibility).strip().lower() == "active"


def map_property(item) -> MappedRecord:
    external_id = require_external_id("properties", item)
    fields = {
        "name": _text(
            item,
            ("property_name", "name", "property_address", "property", "property_street"),
            "Unknown Property",
        ),
        "address_line1": _text(item, ("property_street", "address", "address_line1")),
        "address_line2": _text(item, ("property_street2", "address2", "address_line2")),
        "city": _text(item, ("property_city", "city"), max_length=128),
        "state": _text(item, ("property_state", "state"), max_length=64),
        "zip": _text(item, ("property_zip", "zip", "postal_code"), max_length=20),
        "county": _text(item, ("property_county", "county"), max_length=128),
        "property_type": _text(item, ("property_type", "type"), "residential", max_length=64),
        "portfolio": _text(item, ("portfolio", "portfolio_name")),
        "unit_count": parse_int(first_present(item, ("unit_count", "number_of_units", "units"))),
        "year_built": parse_int(item.get("year_built")),
        "total_sqft": parse_int(first_present(item, ("sqft", "total_sqft"))),
        "is_active": is_visible(item),
    }
    return MappedRecord(external_id, fields, {})


def map_unit(item) -> MappedRecord:
    external_id = require_external_id("units", item)
    fields = {
        "unit_number": _text(item, ("unit_name", "unit_number", "name"), "Unknown", max_length=64),
        "unit_type": _text(item, ("unit_type", "billed_as"), max_length=64),
        "sqft": parse_int(item.get("sqft")),
        "bedrooms": parse_int(item.get("bedrooms")),
        "bathrooms": parse_decimal(item.get("bathrooms")),
        "status": map_unit_status(first_present(item, ("unit_status", "status"))),
        "market_rent": parse_amount(item.get("market_rent")),
        "advertised_rent": parse_amount(item.get("advertised_rent")),
        "is_active": is_visible(item),
        "rentable": parse_bool(item.get("rentable"), default=True),
    }
    return MappedRecord(external_id, fields, {"property": reference_id(item, "property_id", "property")})


def map_vendor(item) -> MappedRecord:
    external_id = require_external_id("vendors", item)
    fields = {
        "company_name": _text(item, ("company_name", "name"), "Unknown Vendor"),
        "contact_name": _text(item, ("contact_name", "name")),
        "email": _text(item, ("email", "primary_email")),
        "phone": _text(item, ("phone", "primary_phone"), max_length=64),
        "vendor_type": _text(item, ("vendor_type",), max_length=64),
        "trades": _text(item, ("vendor_trades", "trades")),
        "liability_ins_expires": parse_date(item.get("liability_ins_expires")),
        "workers_comp_expires": parse_date(item.get("workers_comp_expires")),
        "do_not_use": parse_bool(first_present(item, ("do_not_use_for_work_order", "do_not_use"))),
        "is_active": is_visible(item),
    }
    return MappedRecord(external_id, fields, {})


def map_lease(item) -> MappedRecord:
    external_id = require_external_id("leases", item)
    fields = {
        "start_date": parse_date(first_present(item, ("start_date", "lease_start", "move_in_date"))),
        "end_date": parse_date(first_present(item, ("end_date", "lease_end", "move_out_date"))),
        "rent": parse_amount(first_present(item, ("rent", "monthly_rent", "rent_amount"))),
        "security_deposit": parse_amount(first_present(item, ("security_deposit", "deposit"))),
        "status": map_lease_status(first_present(item, ("status", "lease_status"))),
    }
    return MappedRecord(external_id, fields, {"unit": reference_id(item, "unit_id", "unit")})


def map_work_order(item) -> MappedRecord:
    external_id = require_external_id("work_orders", item)
    fields = {
        "vendor_name": _text(item, ("vendor_name", "vendor")),
        "category": _text(item, ("work_order_type", "work_order_issue", "category"), max_length=128),
        "description": _text(
            item,
            ("job_description", "service_request_description", "instructions", "description"),
            max_length=10000,
        ),
        "status": map_work_order_status(item.get("status")),
        "priority": map_work_order_priority(item.get("priority")),
        "opened_at": parse_datetime(first_present(item, ("created_at", "opened_at"))),
        "closed_at": parse_datetime(first_present(item, ("completed_on", "work_completed_on", "closed_at"))),
        "amount": parse_amount(item.get("amount")),
        "vendor_bill_amount": parse_amount(item.get("vendor_bill_amount")),
        "estimate_amount": parse_amount(first_present(item, ("estimate_amount", "estimate"))),
    }
    references = {
        "property": reference_id(item, "property_id", "property"),
        "unit": reference_id(item, "unit_id", "unit"),
        "vendor": reference_id(item, "vendor_id", "vendor"),
    }
    return MappedRecord(external_id, fields, references)


def map_expense(item) -> MappedRecord:
    external_id = require_external_id("expenses", item)
    fields = {
        "payee_name": _text(item, ("payee_name", "vendor_name")),
        "gl_account_number": extract_gl_account_number(item),
        "gl_account_name": _text(item, ("account_name", "gl_account_name")),
        "amount": parse_amount(first_present(item, ("amount", "total"))),
        "paid": parse_amount(item.get("paid")),
        "unpaid": parse_amount(item.get("unpaid")),
        "bill_date": parse_date(item.get("bill_date")),
        "due_date": parse_date(item.get("due_date")),
        "description": _text(item, ("description", "memo"), max_length=10000),
    }
    references = {
        "property": reference_id(item, "property_id", "property"),
        "vendor": reference_id(item, "vendor_id", "vendor"),
    }
    return MappedRecord(external_id, fields, references)


MAPPERS = {
    "properties": map_property,
    "units": map_unit,
    "vendors": map_vendor,
    "leases": map_lease,
    "work_orders": map_work_order,
    "expenses": map_expense,
}
