# ============================================================================
# apps/reconcile/orchestrator.py - Directional and automatic synchronization
# ============================================================================

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    ASTERISK_PJSIP_CONFIG, ASTERISK_EXTENSIONS_CONFIG, AUTO_SYNC_COOLDOWN, SIP_REALM,
    OUTBOUND_ROUTES_CONTEXT
)
from apps.extensions.models import Extension
from apps.trunks.models import Trunk
from apps.dialplan.models import DialplanRule
from shared.ami import EndpointStatusService
from shared.exceptions import ReconcileError
from . import generator
from .config_store import ConfigStore, EditSession
from .diff import diff, summarize
from .parser import parse_extensions, parse_trunks
from .records import (
    ExtensionRecord, TrunkRecord, DialplanRuleRecord, SyncRecord, SyncStatus,
    EXTENSION_DEFAULTS, TRUNK_DEFAULTS, PJSIP_DEFAULTS
)
from .reload import ReloadCoordinator, ReloadResult
from .throttle import Throttle

logger = logging.getLogger(__name__)

KINDS = ("extension", "trunk")


class SyncResult(BaseModel):
    """How far a synchronization got; each step can fail on its own"""
    success: bool = True
    database_changed: bool = False
    file_changed: bool = False
    engine_reloaded: bool = False
    reload_success: Optional[bool] = None
    reload_output: Optional[str] = None
    processed: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    def fail(self, message: str) -> None:
        logger.error(message)
        self.errors.append(message)
        self.success = False

    def record_reload(self, result: ReloadResult) -> None:
        self.reload_success = result.success
        self.engine_reloaded = result.success
        self.reload_output = result.output if result.success else result.error


class AutoReconcileResult(SyncResult):
    ran: bool = True
    imported: List[str] = Field(default_factory=list)
    exported: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)


# ----------------------------------------------------------------------------
# Entity adapters
# ----------------------------------------------------------------------------

class ExtensionAdapter:
    kind = "extension"
    label_prefix = "Extension "

    def __init__(self, realm: str = SIP_REALM):
        self.realm = realm

    def label(self, identity: str) -> str:
        return generator.extension_label(identity)

    def rows(self, db: Session) -> List[Extension]:
        return db.query(Extension).order_by(Extension.id).all()

    def get(self, db: Session, identity: str) -> Optional[Extension]:
        return db.query(Extension).filter(Extension.extension_number == identity).first()

    def identity_of(self, row: Extension) -> str:
        return row.extension_number

    def to_record(self, row: Extension) -> ExtensionRecord:
        return ExtensionRecord(
            number=row.extension_number,
            name=row.name,
            md5_cred=row.secret_hash,
            context=row.context or EXTENSION_DEFAULTS["context"],
            transport=row.transport or EXTENSION_DEFAULTS["transport"],
            codecs=row.codecs or list(EXTENSION_DEFAULTS["codecs"]),
            max_contacts=row.max_contacts if row.max_contacts is not None else EXTENSION_DEFAULTS["max_contacts"],
            qualify_frequency=(row.qualify_frequency if row.qualify_frequency is not None
                               else EXTENSION_DEFAULTS["qualify_frequency"]),
            direct_media=bool(row.direct_media),
            enabled=bool(row.enabled) if row.enabled is not None else True,
        )

    def render(self, record: ExtensionRecord) -> str:
        return generator.extension_sections(record, self.realm)

    def parse(self, text: str) -> List[ExtensionRecord]:
        return parse_extensions(text, self.realm)

    def adopt_names(self, identity: str) -> List[str]:
        return [identity, f"{identity}-auth", f"{identity}-aor"]

    def apply(self, row: Extension, record: ExtensionRecord) -> bool:
        """Copy external values onto a row; the extension number never changes"""
        values = {
            "context": record.context,
            "transport": record.transport,
            "codecs": list(record.codecs),
            "max_contacts": record.max_contacts,
            "qualify_frequency": record.qualify_frequency,
            "direct_media": record.direct_media,
        }
        if record.name:
            values["name"] = record.name
        if record.md5_cred:
            values["secret_hash"] = record.md5_cred
        return _assign(row, values)

    def create(self, record: ExtensionRecord) -> Extension:
        row = Extension(extension_number=record.number, enabled=True)
        self.apply(row, record)
        return row


class TrunkAdapter:
    kind = "trunk"
    label_prefix = "Trunk "

    def label(self, identity: str) -> str:
        return generator.trunk_label(identity)

    def rows(self, db: Session) -> List[Trunk]:
        return db.query(Trunk).order_by(Trunk.id).all()

    def get(self, db: Session, identity: str) -> Optional[Trunk]:
        return db.query(Trunk).filter(Trunk.name == identity).first()

    def identity_of(self, row: Trunk) -> str:
        return row.name

    def to_record(self, row: Trunk) -> TrunkRecord:
        def pick(field):
            value = getattr(row, field)
            return TRUNK_DEFAULTS[field] if value is None else value

        return TrunkRecord(
            name=row.name,
            host=row.host or "",
            port=pick("port"),
            username=row.username or None,
            secret=row.secret or None,
            transport=pick("transport"),
            codecs=row.codecs or list(TRUNK_DEFAULTS["codecs"]),
            context=pick("context"),
            from_domain=row.from_domain or None,
            from_user=row.from_user or None,
            qualify_frequency=pick("qualify_frequency"),
            match_inbound=True if row.match_inbound is None else bool(row.match_inbound),
            priority=pick("priority"),
            prefix=pick("prefix"),
            strip_digits=pick("strip_digits"),
            max_channels=pick("max_channels"),
            enabled=True if row.enabled is None else bool(row.enabled),
        )

    def render(self, record: TrunkRecord) -> str:
        return generator.trunk_sections(record)

    def parse(self, text: str) -> List[TrunkRecord]:
        return parse_trunks(text)

    def adopt_names(self, identity: str) -> List[str]:
        return [identity, f"{identity}-auth", f"{identity}-aor", f"{identity}-identify"]

    def apply(self, row: Trunk, record: TrunkRecord) -> bool:
        values = {
            "host": record.host,
            "port": record.port,
            "username": record.username,
            "transport": record.transport,
            "codecs": list(record.codecs),
            "context": record.context,
            "from_domain": record.from_domain,
            "from_user": record.from_user,
            "qualify_frequency": record.qualify_frequency,
            "match_inbound": record.match_inbound,
        }
        if record.secret:
            values["secret"] = record.secret
        return _assign(row, values)

    def create(self, record: TrunkRecord) -> Trunk:
        row = Trunk(
            name=record.name,
            priority=record.priority,
            prefix=record.prefix,
            strip_digits=record.strip_digits,
            max_channels=record.max_channels,
            enabled=True,
        )
        self.apply(row, record)
        return row


def _assign(row: Any, values: Dict[str, Any]) -> bool:
    changed = False
    for field, value in values.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            changed = True
    return changed


# ----------------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------------

class ReconcileOrchestrator:
    """Moves entities between the database and the Asterisk configuration files"""

    def __init__(self, pjsip_store: Optional[ConfigStore] = None,
                 dialplan_store: Optional[ConfigStore] = None,
                 reloader: Optional[ReloadCoordinator] = None,
                 throttle: Optional[Throttle] = None,
                 status_service: Optional[EndpointStatusService] = None,
                 realm: str = SIP_REALM,
                 outbound_context: str = OUTBOUND_ROUTES_CONTEXT):
        self.pjsip_store = pjsip_store or ConfigStore(ASTERISK_PJSIP_CONFIG)
        self.dialplan_store = dialplan_store or ConfigStore(ASTERISK_EXTENSIONS_CONFIG)
        self.reloader = reloader or ReloadCoordinator(scope_paths={
            "pjsip": [self.pjsip_store.path],
            "dialplan": [self.dialplan_store.path],
            "all": [self.pjsip_store.path, self.dialplan_store.path],
        })
        self.throttle = throttle or Throttle(AUTO_SYNC_COOLDOWN)
        self.status_service = status_service
        self.outbound_context = outbound_context
        self.adapters = {
            "extension": ExtensionAdapter(realm),
            "trunk": TrunkAdapter(),
        }

    def adapter(self, kind: str):
        if kind not in self.adapters:
            raise ValueError(f"Unknown entity kind '{kind}'")
        return self.adapters[kind]

    def _kinds(self, kind: Optional[str]) -> List[str]:
        return [kind] if kind else list(KINDS)

    # ------------------------------------------------------------------
    # reading
    # ------------------------------------------------------------------

    def parse_all(self, kind: str) -> List[BaseModel]:
        """Records currently defined in pjsip.conf"""
        adapter = self.adapter(kind)
        with self.pjsip_store.lock:
            text = self.pjsip_store.read_text()
        return adapter.parse(text)

    def database_records(self, db: Session, kind: str, enabled_only: bool = True) -> List[BaseModel]:
        adapter = self.adapter(kind)
        rows = adapter.rows(db)
        return [adapter.to_record(row) for row in rows if row.enabled or not enabled_only]

    def diff(self, db: Session, kind: str) -> List[SyncRecord]:
        return diff(self.database_records(db, kind), self.parse_all(kind))

    def status(self, db: Session) -> Dict[str, Any]:
        """Classification of every identity, with registration state where known"""
        registrations: Dict[str, Optional[bool]] = {}
        engine_status = None
        if self.status_service is not None:
            endpoints = self.status_service.list_endpoints()
            engine_status = endpoints["status"]
            registrations = {name: info["registered"] for name, info in (endpoints["endpoints"] or {}).items()}

        result: Dict[str, Any] = {"engine_status": engine_status}
        for kind in KINDS:
            records = self.diff(db, kind)
            for record in records:
                record.registered = registrations.get(record.identity)
            result[f"{kind}s"] = {
                "summary": summarize(records),
                "records": [record.model_dump(mode="json") for record in records],
            }
        return result

    # ------------------------------------------------------------------
    # writing helpers
    # ------------------------------------------------------------------

    def _export(self, session: EditSession, adapter, row) -> bool:
        identity = adapter.identity_of(row)
        label = adapter.label(identity)
        if not row.enabled:
            return session.remove_block(label)
        text = adapter.render(adapter.to_record(row))
        return session.write_block(label, text, adopt=adapter.adopt_names(identity))

    def ensure_transports(self, db: Session, session: EditSession) -> bool:
        """Managed transport sections for transports in use and not defined by hand"""
        needed = set()
        for kind in KINDS:
            needed.update(record.transport for record in self.database_records(db, kind))

        defined = {
            section.name for section in session.document.sections()
            if section.managed_label != generator.TRANSPORTS_LABEL
        }
        known = PJSIP_DEFAULTS["transports"]
        missing = []
        for transport in sorted(needed):
            if generator.transport_name(transport) in defined:
                continue
            if transport not in known:
                logger.warning(f"Transport '{transport}' is not defined in pjsip.conf")
                continue
            missing.append(transport)

        if missing:
            return session.write_block(generator.TRANSPORTS_LABEL, generator.transport_sections(missing))
        return session.remove_block(generator.TRANSPORTS_LABEL)

    def regenerate_dialplan(self, db: Session) -> bool:
        """Rewrite the rules and outbound routes blocks of extensions.conf"""
        rules = [DialplanRuleRecord.model_validate(row)
                 for row in db.query(DialplanRule).order_by(DialplanRule.id).all()]
        trunks = self.database_records(db, "trunk")

        rules_text = generator.dialplan_rules(rules)
        routes_text = generator.outbound_routes(trunks, self.outbound_context)
        with self.dialplan_store.edit() as session:
            if rules_text:
                session.write_block(generator.DIALPLAN_RULES_LABEL, rules_text)
            else:
                session.remove_block(generator.DIALPLAN_RULES_LABEL)
            if routes_text:
                session.write_block(generator.OUTBOUND_ROUTES_LABEL, routes_text)
            else:
                session.remove_block(generator.OUTBOUND_ROUTES_LABEL)
        return session.changed

    def reload(self, scopes: Iterable[str]) -> ReloadResult:
        return self.reloader.reload_scopes(scopes)

    def _finish(self, db: Session, result: SyncResult, pjsip_changed: bool,
                always_reload: bool = True) -> SyncResult:
        """Regenerate the dialplan, then reload what changed"""
        dialplan_changed = False
        try:
            dialplan_changed = self.regenerate_dialplan(db)
        except ReconcileError as e:
            result.fail(f"Dialplan regeneration failed: {e}")

        result.file_changed = result.file_changed or pjsip_changed or dialplan_changed
        scopes = []
        if pjsip_changed or always_reload:
            scopes.append("pjsip")
        if dialplan_changed:
            scopes.append("dialplan")
        if len(scopes) > 1:
            # one reload covering both files
            scopes = ["all"]
        if scopes:
            result.record_reload(self.reload(scopes))
        return result

    # ------------------------------------------------------------------
    # database -> config
    # ------------------------------------------------------------------

    def sync_one_to_external(self, db: Session, kind: str, identity: str,
                             reload: bool = True, missing_ok: bool = False) -> SyncResult:
        """Write one entity's managed block; a missing or disabled entity loses its block"""
        adapter = self.adapter(kind)
        result = SyncResult()
        try:
            row = adapter.get(db, identity)
            with self.pjsip_store.edit() as session:
                if row is None:
                    if not session.remove_block(adapter.label(identity)) and not missing_ok:
                        result.fail(f"{kind.capitalize()} {identity} not found")
                        return result
                else:
                    self._export(session, adapter, row)
                self.ensure_transports(db, session)
            result.processed.append(identity)
            pjsip_changed = session.changed
        except ReconcileError as e:
            result.fail(f"Failed to write {kind} {identity}: {e}")
            return result

        logger.info(f"Synced {kind} {identity} to config (changed: {pjsip_changed})")
        return self._finish(db, result, pjsip_changed, always_reload=reload)

    def sync_all_to_external(self, db: Session, kind: Optional[str] = None) -> SyncResult:
        """Write every entity; one bad entity does not stop the others"""
        result = SyncResult()
        try:
            with self.pjsip_store.edit() as session:
                for current in self._kinds(kind):
                    adapter = self.adapter(current)
                    rows = adapter.rows(db)
                    for row in rows:
                        identity = adapter.identity_of(row)
                        try:
                            self._export(session, adapter, row)
                            result.processed.append(identity)
                        except ReconcileError as e:
                            result.fail(f"Failed to write {current} {identity}: {e}")

                    live = {adapter.identity_of(row) for row in rows}
                    for label in session.document.managed_labels():
                        if label.startswith(adapter.label_prefix) and label[len(adapter.label_prefix):] not in live:
                            session.remove_block(label)
                            logger.info(f"Removed stale block '{label}'")
                self.ensure_transports(db, session)
            pjsip_changed = session.changed
        except ReconcileError as e:
            result.fail(f"Failed to update {self.pjsip_store.path}: {e}")
            return result

        return self._finish(db, result, pjsip_changed)

    # ------------------------------------------------------------------
    # config -> database
    # ------------------------------------------------------------------

    def _import(self, db: Session, adapter, record, result: SyncResult) -> Optional[bool]:
        """Create or update the row for an external record; None on failure"""
        try:
            row = adapter.get(db, record.identity)
            if row is None:
                db.add(adapter.create(record))
                changed = True
            else:
                changed = adapter.apply(row, record)
            if changed:
                db.commit()
                result.database_changed = True
            return changed
        except SQLAlchemyError as e:
            db.rollback()
            result.fail(f"Failed to import {adapter.kind} {record.identity}: {e}")
            return None

    def sync_one_from_external(self, db: Session, kind: str, identity: str) -> SyncResult:
        adapter = self.adapter(kind)
        result = SyncResult()
        try:
            external = {record.identity: record for record in self.parse_all(kind)}
        except ReconcileError as e:
            result.fail(f"Failed to read {self.pjsip_store.path}: {e}")
            return result

        record = external.get(identity)
        if record is None:
            result.fail(f"{kind.capitalize()} {identity} not found in {self.pjsip_store.path}")
            return result
        if self._import(db, adapter, record, result) is not None:
            result.processed.append(identity)
            logger.info(f"Synced {kind} {identity} from config")
        return result

    def sync_all_from_external(self, db: Session, kind: Optional[str] = None) -> SyncResult:
        result = SyncResult()
        for current in self._kinds(kind):
            adapter = self.adapter(current)
            try:
                records = self.parse_all(current)
            except ReconcileError as e:
                result.fail(f"Failed to read {self.pjsip_store.path}: {e}")
                continue
            for record in records:
                if self._import(db, adapter, record, result) is not None:
                    result.processed.append(record.identity)
        return result

    # ------------------------------------------------------------------
    # bidirectional
    # ------------------------------------------------------------------

    def auto_reconcile(self, db: Session, force: bool = False) -> AutoReconcileResult:
        """Import config-only entities, export database-only ones, report conflicts.

        Mismatched pairs are only logged; neither side is overwritten.
        """
        if force:
            self.throttle.mark()
        elif not self.throttle.try_acquire():
            logger.debug(f"Auto reconcile skipped, next run in {self.throttle.remaining():.0f}s")
            return AutoReconcileResult(ran=False)

        result = AutoReconcileResult()
        try:
            with self.pjsip_store.edit() as session:
                for kind in KINDS:
                    self._reconcile_kind(db, kind, session, result)
                if result.exported:
                    self.ensure_transports(db, session)
            pjsip_changed = session.changed
        except ReconcileError as e:
            result.fail(f"Auto reconcile failed: {e}")
            return result

        if result.imported or result.exported:
            self._finish(db, result, pjsip_changed, always_reload=True)
        logger.info(
            f"Auto reconcile: imported {len(result.imported)}, exported {len(result.exported)}, "
            f"conflicts {len(result.conflicts)}"
        )
        return result

    def _reconcile_kind(self, db: Session, kind: str, session: EditSession,
                        result: AutoReconcileResult) -> None:
        adapter = self.adapter(kind)
        external = adapter.parse(session.original)
        records = diff(self.database_records(db, kind), external)
        external_by_id = {record.identity: record for record in external}

        for record in records:
            identity = record.identity
            if record.status is SyncStatus.MATCH:
                continue

            if record.status is SyncStatus.MISMATCH:
                details = "; ".join(record.describe_differences())
                logger.warning(f"Sync conflict for {kind} {identity}: {details}")
                result.conflicts.append(f"{kind} {identity}: {details}")
                continue

            if record.status is SyncStatus.EXTERNAL_ONLY:
                if adapter.get(db, identity) is not None:
                    logger.warning(f"Sync conflict for {kind} {identity}: disabled in database, defined in config")
                    result.conflicts.append(f"{kind} {identity}: disabled in database")
                    continue
                if self._import(db, adapter, external_by_id[identity], result) is not None:
                    logger.info(f"Imported {kind} {identity} from config")
                    result.imported.append(identity)
                continue

            row = adapter.get(db, identity)
            try:
                self._export(session, adapter, row)
            except ReconcileError as e:
                result.fail(f"Failed to export {kind} {identity}: {e}")
                continue
            logger.info(f"Exported {kind} {identity} to config")
            result.exported.append(identity)
