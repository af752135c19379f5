from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WorkflowContext:
    """Caller scope passed into every workflow call.

    ``school_id`` restricts loads to one school when set. ``demo_mode`` only tags
    log and audit output; the demo store itself is chosen once at startup.
    """
    account_id: Optional[str] = None
    school_id: Optional[str] = None
    demo_mode: bool = False

    def can_see(self, school_id: Optional[str]) -> bool:
        if not self.school_id:
            return True
        return school_id == self.school_id
