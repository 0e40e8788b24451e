"""Idempotent writes of mapped records into the portfolio tables."""
import logging
from datetime import date
from typing import Optional

from django.db.models import Exists, OuterRef, Q
from django.utils import timezone

from portfolio.models import Expense, Lease, Property, Unit, UnitStatus, Vendor, WorkOrder

from .mappers import MAPPERS, MappedRecord, SkipRecord

logger = logging.getLogger(__name__)

MODELS = {
    "properties": Property,
    "units": Unit,
    "vendors": Vendor,
    "leases": Lease,
    "work_orders": WorkOrder,
    "expenses": Expense,
}

REFERENCE_MODELS = {
    "property": Property,
    "unit": Unit,
    "vendor": Vendor,
}

# Per resource: references that must resolve, and references that may be absent.
# An optional reference that is given but unknown still skips the record; an
# unknown vendor is stored as null instead.
REQUIRED_REFERENCES = {
    "units": ("property",),
    "leases": ("unit",),
    "work_orders": ("property",),
}
OPTIONAL_REFERENCES = {
    "work_orders": ("unit", "vendor"),
    "expenses": ("property", "vendor"),
}
LENIENT_REFERENCES = ("vendor",)


class EntityUpserter:
    """
    Maps one raw item and upserts it by external id. Holds a per-instance cache of
    external id -> primary key so repeated references cost one query each.
    """

    def __init__(self):
        self._ids = {name: {} for name in REFERENCE_MODELS}

    def upsert(self, resource_type: str, item) -> bool:
        """Returns True when created, False when updated. Raises SkipRecord or MappingError."""
        mapper = MAPPERS.get(resource_type)
        if mapper is None:
            raise ValueError(f"Unknown resource type: {resource_type}")
        record = mapper(item)
        defaults = dict(record.fields)
        defaults.update(self._resolve_references(resource_type, record))

        model = MODELS[resource_type]
        obj, created = model.objects.update_or_create(
            external_id=record.external_id, defaults=defaults
        )
        reference_name = _reference_name(resource_type)
        if reference_name:
            self._ids[reference_name][record.external_id] = obj.pk
        return created

    def _resolve_references(self, resource_type: str, record: MappedRecord) -> dict:
        resolved = {}
        for name in REQUIRED_REFERENCES.get(resource_type, ()):
            external_ref = record.references.get(name)
            pk = self.lookup(name, external_ref)
            if pk is None:
                raise SkipRecord(
                    f"Missing related {name} {external_ref or '(none)'} for {resource_type} {record.external_id}"
                )
            resolved[f"{name}_id"] = pk
        for name in OPTIONAL_REFERENCES.get(resource_type, ()):
            external_ref = record.references.get(name)
            if external_ref is None:
                resolved[f"{name}_id"] = None
                continue
            pk = self.lookup(name, external_ref)
            if pk is None and name not in LENIENT_REFERENCES:
                raise SkipRecord(
                    f"Missing related {name} {external_ref} for {resource_type} {record.external_id}"
                )
            resolved[f"{name}_id"] = pk
        return resolved

    def lookup(self, name: str, external_id: Optional[str]) -> Optional[int]:
        if not external_id:
            return None
        cache = self._ids[name]
        if external_id not in cache:
            model = REFERENCE_MODELS[name]
            cache[external_id] = (
                model.objects.filter(external_id=external_id).values_list("pk", flat=True).first()
            )
        return cache[external_id]


def _reference_name(resource_type: str) -> Optional[str]:
    for name, model in REFERENCE_MODELS.items():
        if MODELS[resource_type] is model:
            return name
    return None


def update_unit_status_from_leases(today: Optional[date] = None) -> int:
    """
    Derive occupancy from lease dates: a unit with a lease covering `today`
    (started, and not ended or open-ended) is occupied, any other unit is vacant.
    Units marked not_ready are left alone. Returns the number of units changed.
    """
    today = today or timezone.localdate()
    active_lease = Lease.objects.filter(unit_id=OuterRef("pk"), start_date__lte=today).filter(
        Q(end_date__gte=today) | Q(end_date__isnull=True)
    )
    units = Unit.objects.exclude(status=UnitStatus.NOT_READY)
    now = timezone.now()
    occupied = (
        units.filter(Exists(active_lease))
        .exclude(status=UnitStatus.OCCUPIED)
        .update(status=UnitStatus.OCCUPIED, updated_at=now)
    )
    vacated = (
        units.filter(~Exists(active_lease))
        .exclude(status=UnitStatus.VACANT)
        .update(status=UnitStatus.VACANT, updated_at=now)
    )
    logger.info(
        "Updated unit statuses from leases: occupied=%s vacated=%s as_of=%s",
        occupied, vacated, today.isoformat(),
    )
    return occupied + vacated
