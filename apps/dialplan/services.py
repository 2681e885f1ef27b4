# ============================================================================
# apps/dialplan/services.py - Dialplan rule management
# ============================================================================

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.reconcile import generator
from apps.reconcile.orchestrator import ReconcileOrchestrator, SyncResult
from apps.reconcile.records import DialplanRuleRecord
from shared.exceptions import ReconcileError
from shared.utils import execute_asterisk_command
from .models import DialplanRule
from .schemas import DialplanRuleCreate, DialplanRuleUpdate, OutboundRuleCreate

logger = logging.getLogger(__name__)

DEFAULT_CONTEXTS = ("from-internal", "from-trunk")


class DialplanService:
    """Rule CRUD; every change regenerates the managed dialplan blocks"""

    def __init__(self, db: Session, orchestrator: ReconcileOrchestrator,
                 runner=execute_asterisk_command):
        self.db = db
        self.orchestrator = orchestrator
        self.runner = runner

    def list_rules(self, context: Optional[str] = None, enabled: Optional[bool] = None) -> List[DialplanRule]:
        query = self.db.query(DialplanRule)
        if context:
            query = query.filter(DialplanRule.context == context)
        if enabled is not None:
            query = query.filter(DialplanRule.enabled == enabled)
        return query.order_by(DialplanRule.context, DialplanRule.sort_order, DialplanRule.pattern).all()

    def get_rule(self, rule_id: int) -> Optional[DialplanRule]:
        return self.db.query(DialplanRule).filter(DialplanRule.id == rule_id).first()

    def contexts(self) -> List[str]:
        names = {row[0] for row in self.db.query(DialplanRule.context).distinct().all()}
        names.update(DEFAULT_CONTEXTS)
        names.add(self.orchestrator.outbound_context)
        return sorted(names)

    def apply(self) -> SyncResult:
        """Regenerate extensions.conf blocks and reload the dialplan when they changed"""
        result = SyncResult()
        try:
            result.file_changed = self.orchestrator.regenerate_dialplan(self.db)
        except ReconcileError as e:
            result.fail(f"Dialplan regeneration failed: {e}")
            return result
        if result.file_changed:
            result.record_reload(self.orchestrator.reload(["dialplan"]))
        return result

    def _save(self, action: str, label: str) -> SyncResult:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action} dialplan rule {label}: {str(e)}")
            return SyncResult(success=False, errors=[f"Database error: {str(e)}"])

        logger.info(f"Dialplan rule {label} {action}d")
        result = self.apply()
        result.database_changed = True
        return result

    def create_rule(self, data: DialplanRuleCreate) -> Tuple[DialplanRule, SyncResult]:
        rule = DialplanRule(**data.model_dump())
        self.db.add(rule)
        result = self._save("create", data.name)
        if result.database_changed:
            self.db.refresh(rule)
        return rule, result

    def update_rule(self, rule_id: int, data: DialplanRuleUpdate) -> Tuple[Optional[DialplanRule], SyncResult]:
        rule = self.get_rule(rule_id)
        if rule is None:
            return None, SyncResult(success=False, errors=[f"Dialplan rule {rule_id} not found"])

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field != "description":
                continue
            setattr(rule, field, value)
        result = self._save("update", str(rule_id))
        if result.database_changed:
            self.db.refresh(rule)
        return rule, result

    def delete_rule(self, rule_id: int) -> SyncResult:
        rule = self.get_rule(rule_id)
        if rule is None:
            return SyncResult(success=False, errors=[f"Dialplan rule {rule_id} not found"])
        self.db.delete(rule)
        return self._save("delete", str(rule_id))

    def toggle_rule(self, rule_id: int) -> Tuple[Optional[DialplanRule], SyncResult]:
        rule = self.get_rule(rule_id)
        if rule is None:
            return None, SyncResult(success=False, errors=[f"Dialplan rule {rule_id} not found"])
        rule.enabled = not rule.enabled
        result = self._save("update", str(rule_id))
        if result.database_changed:
            self.db.refresh(rule)
        return rule, result

    def preview(self, context: str) -> Tuple[int, str]:
        """Rendered text of one context's enabled rules"""
        rules = [DialplanRuleRecord.model_validate(row) for row in self.list_rules(context, enabled=True)]
        return len(rules), "\n".join(generator.context_block(context, rules))

    def _add_record(self, record: DialplanRuleRecord) -> DialplanRule:
        rule = DialplanRule(**record.model_dump())
        self.db.add(rule)
        return rule

    def create_defaults(self) -> Tuple[List[DialplanRule], SyncResult]:
        """Add the internal extension pattern unless it already exists"""
        default = generator.default_internal_rule()
        exists = self.db.query(DialplanRule).filter(
            DialplanRule.context == default.context,
            DialplanRule.pattern == default.pattern
        ).first()
        if exists:
            return [], SyncResult()

        rule = self._add_record(default)
        result = self._save("create", default.name)
        if result.database_changed:
            self.db.refresh(rule)
            return [rule], result
        return [], result

    def create_outbound_rule(self, data: OutboundRuleCreate) -> Tuple[DialplanRule, SyncResult]:
        record = generator.outbound_rule(data.name, data.prefix, data.trunk_name, data.strip_digits)
        rule = self._add_record(record)
        result = self._save("create", data.name)
        if result.database_changed:
            self.db.refresh(rule)
        return rule, result

    def show_live(self, context: Optional[str] = None) -> Dict[str, object]:
        """Dialplan as currently loaded by Asterisk"""
        command = f"dialplan show {context}" if context else "dialplan show"
        success, output = self.runner(command)
        if not success:
            logger.warning(f"'{command}' failed: {output}")
        return {"success": success, "context": context, "output": output}
