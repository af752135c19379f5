from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from signflow.core.context import WorkflowContext
from signflow.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
    WorkflowError,
)
from signflow.schemas.convention import Role
from signflow.services.workflow import ConventionWorkflow, SignatureResult

logger = logging.getLogger("signflow.workflow")

# Failures that stop a batch; anything else is a bug and propagates
BATCH_STOPPING_ERRORS = (WorkflowError, NotFoundException, ForbiddenException, ValidationException)


@dataclass
class BulkSignResult:
    role: Role
    processed: List[SignatureResult] = field(default_factory=list)
    unprocessed: List[str] = field(default_factory=list)
    failed_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def completed(self) -> bool:
        return self.failed_id is None

    @property
    def processed_ids(self) -> List[str]:
        return [r.convention.id for r in self.processed]


class BulkSignCoordinator:
    """Signs many conventions for one role, strictly one after the other.

    The first failure ends the batch: the failing id and every id after it are
    reported back as unprocessed.
    """

    def __init__(self, workflow: ConventionWorkflow):
        self.workflow = workflow

    def sign_all(
        self,
        context: WorkflowContext,
        convention_ids: Sequence[str],
        role: Role | str,
        artifact: Optional[str] = None,
        dual_sign: bool = False,
        actor_address: Optional[str] = None,
    ) -> BulkSignResult:
        role = Role(role)
        result = BulkSignResult(role=role)
        ids = list(convention_ids)
        for position, convention_id in enumerate(ids):
            try:
                outcome = self.workflow.sign(
                    context,
                    convention_id,
                    role,
                    artifact=artifact,
                    dual_sign=dual_sign,
                    actor_address=actor_address,
                )
            except BATCH_STOPPING_ERRORS as e:
                result.failed_id = convention_id
                result.error = e
                result.unprocessed = ids[position:]
                logger.warning(
                    f"[bulk] Stopped at convention={convention_id} role={role.value} "
                    f"({position}/{len(ids)} done): {getattr(e, 'detail', e)}"
                )
                break
            result.processed.append(outcome)
        else:
            logger.info(f"[bulk] Signed {len(ids)} conventions as {role.value}")
        return result
