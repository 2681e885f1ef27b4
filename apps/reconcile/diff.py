# ============================================================================
# apps/reconcile/diff.py - Classify database records against parsed config records
# ============================================================================

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Type

from pydantic import BaseModel

from .records import (
    ExtensionRecord, TrunkRecord, FieldDifference, SyncRecord, SyncStatus
)

SECRET_FIELDS = ("md5_cred", "secret")
MASK = "********"


def same_text(left: Any, right: Any) -> bool:
    return str(left) == str(right)


def same_number(left: Any, right: Any) -> bool:
    try:
        return int(left) == int(right)
    except (TypeError, ValueError):
        return same_text(left, right)


def same_flag(left: Any, right: Any) -> bool:
    return bool(left) == bool(right)


def same_optional(left: Any, right: Any) -> bool:
    return (left or None) == (right or None)


def same_codecs(left: Sequence[str], right: Sequence[str]) -> bool:
    """Codec priority matters: same codecs in the same order"""
    return list(left or []) == list(right or [])


class ComparedField:
    """How one field is compared"""

    def __init__(self, name: str, compare: Callable[[Any, Any], bool], external_optional: bool = False):
        self.name = name
        self.compare = compare
        self.external_optional = external_optional


EXTENSION_FIELDS = [
    ComparedField("name", same_optional, external_optional=True),
    ComparedField("context", same_text),
    ComparedField("transport", same_text),
    ComparedField("codecs", same_codecs),
    ComparedField("max_contacts", same_number),
    ComparedField("qualify_frequency", same_number),
    ComparedField("direct_media", same_flag),
    ComparedField("md5_cred", same_optional, external_optional=True),
]

TRUNK_FIELDS = [
    ComparedField("host", same_text),
    ComparedField("port", same_number),
    ComparedField("transport", same_text),
    ComparedField("codecs", same_codecs),
    ComparedField("context", same_text),
    ComparedField("qualify_frequency", same_number),
    ComparedField("username", same_optional),
    ComparedField("secret", same_optional, external_optional=True),
    ComparedField("from_domain", same_optional),
    ComparedField("from_user", same_optional),
    ComparedField("match_inbound", same_flag),
]

FIELDS_BY_MODEL: Dict[Type[BaseModel], List[ComparedField]] = {
    ExtensionRecord: EXTENSION_FIELDS,
    TrunkRecord: TRUNK_FIELDS,
}


def field_default(model: Type[BaseModel], field: str) -> Any:
    return model.model_fields[field].get_default(call_default_factory=True)


def field_value(record: BaseModel, field: str) -> Any:
    """Field value, falling back to the field's default when absent"""
    value = getattr(record, field, None)
    if value is None:
        return field_default(type(record), field)
    return value


def compare(database: BaseModel, external: BaseModel,
            fields: Optional[List[ComparedField]] = None) -> List[FieldDifference]:
    """Field level differences between two records of the same type"""
    fields = fields or FIELDS_BY_MODEL[type(database)]
    differences = []
    for compared in fields:
        if compared.external_optional and getattr(external, compared.name, None) in (None, ""):
            continue
        left = field_value(database, compared.name)
        right = field_value(external, compared.name)
        if compared.compare(left, right):
            continue
        if compared.name in SECRET_FIELDS:
            left, right = MASK, MASK
        differences.append(FieldDifference(field=compared.name, database=left, external=right))
    return differences


def public_dict(record: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if record is None:
        return None
    return record.model_dump(exclude=set(SECRET_FIELDS))


def classify(identity: str, database: Optional[BaseModel], external: Optional[BaseModel]) -> SyncRecord:
    if database is None and external is None:
        raise ValueError(f"Nothing to classify for {identity}")
    if external is None:
        status, differences = SyncStatus.DATABASE_ONLY, []
    elif database is None:
        status, differences = SyncStatus.EXTERNAL_ONLY, []
    else:
        differences = compare(database, external)
        status = SyncStatus.MISMATCH if differences else SyncStatus.MATCH
    return SyncRecord(
        identity=identity,
        status=status,
        database=public_dict(database),
        external=public_dict(external),
        differences=differences,
    )


def identity_sort_key(identity: str):
    return (0, int(identity), identity) if identity.isdigit() else (1, 0, identity)


def diff(database_set: Iterable[BaseModel], external_set: Iterable[BaseModel]) -> List[SyncRecord]:
    """Classify every identity present on either side"""
    database_by_id = {record.identity: record for record in database_set}
    external_by_id = {record.identity: record for record in external_set}
    identities = sorted(set(database_by_id) | set(external_by_id), key=identity_sort_key)
    return [
        classify(identity, database_by_id.get(identity), external_by_id.get(identity))
        for identity in identities
    ]


def summarize(records: Iterable[SyncRecord]) -> Dict[str, int]:
    records = list(records)
    counts = {status: 0 for status in SyncStatus}
    for record in records:
        counts[record.status] += 1
    return {
        "total": len(records),
        "matched": counts[SyncStatus.MATCH],
        "db_only": counts[SyncStatus.DATABASE_ONLY],
        "external_only": counts[SyncStatus.EXTERNAL_ONLY],
        "mismatched": counts[SyncStatus.MISMATCH],
    }
