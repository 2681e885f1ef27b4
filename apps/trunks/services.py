# ============================================================================
# apps/trunks/services.py - Trunk CRUD with config and outbound route regeneration
# ============================================================================

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from apps.reconcile.orchestrator import ReconcileOrchestrator, SyncResult
from shared.exceptions import ValidationError
from .models import Trunk
from .schemas import TrunkCreate, TrunkUpdate

logger = logging.getLogger(__name__)

NULLABLE_FIELDS = ("username", "secret", "from_domain", "from_user", "notes")


class TrunkService:
    def __init__(self, db: Session, orchestrator: ReconcileOrchestrator):
        self.db = db
        self.orchestrator = orchestrator

    def list_trunks(self, enabled: Optional[bool] = None) -> List[Trunk]:
        query = self.db.query(Trunk)
        if enabled is not None:
            query = query.filter(Trunk.enabled == enabled)
        return query.order_by(Trunk.priority, Trunk.name).all()

    def get_trunk(self, name: str) -> Optional[Trunk]:
        return self.db.query(Trunk).filter(Trunk.name == name).first()

    def _commit(self, action: str, name: str) -> Optional[str]:
        try:
            self.db.commit()
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action} trunk {name}: {str(e)}")
            return f"Database error: {str(e)}"

    def _publish(self, name: str, deleted: bool = False) -> SyncResult:
        # outbound routes are regenerated as part of the sync
        result = self.orchestrator.sync_one_to_external(self.db, "trunk", name, missing_ok=deleted)
        result.database_changed = True
        return result

    def create_trunk(self, data: TrunkCreate) -> Tuple[Optional[Trunk], SyncResult]:
        if self.get_trunk(data.name):
            raise ValidationError(f"Trunk {data.name} already exists")

        values = data.model_dump()
        values["codecs"] = list(data.codecs)
        trunk = Trunk(**values)
        self.db.add(trunk)
        error = self._commit("create", data.name)
        if error:
            return None, SyncResult(success=False, errors=[error])

        self.db.refresh(trunk)
        logger.info(f"Created trunk {trunk.name}")
        return trunk, self._publish(trunk.name)

    def update_trunk(self, name: str, data: TrunkUpdate) -> Tuple[Optional[Trunk], SyncResult]:
        trunk = self.get_trunk(name)
        if trunk is None:
            return None, SyncResult(success=False, errors=[f"Trunk {name} not found"])

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field not in NULLABLE_FIELDS:
                continue
            setattr(trunk, field, value)

        error = self._commit("update", name)
        if error:
            return trunk, SyncResult(success=False, errors=[error])

        self.db.refresh(trunk)
        logger.info(f"Updated trunk {name}")
        return trunk, self._publish(name)

    def delete_trunk(self, name: str) -> SyncResult:
        trunk = self.get_trunk(name)
        if trunk is None:
            return SyncResult(success=False, errors=[f"Trunk {name} not found"])

        self.db.delete(trunk)
        error = self._commit("delete", name)
        if error:
            return SyncResult(success=False, errors=[error])

        logger.info(f"Deleted trunk {name}")
        return self._publish(name, deleted=True)
