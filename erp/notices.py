from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
COMPLETION_ELIGIBLE = "COMPLETION_ELIGIBLE"
ROLLBACK_INCOMPLETE = "ROLLBACK_INCOMPLETE"


@dataclass
class Notice:
    """
    A decision point handed back to the caller.

    ``data`` holds the numbers needed to decide. ``confirm()`` runs the
    proposed action; callers that decline simply drop the notice.
    """

    kind: str = ""
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    proceed: Optional[Callable[[], Any]] = field(default=None, repr=False, compare=False)

    @property
    def confirmable(self) -> bool:
        return self.proceed is not None

    def confirm(self) -> Any:
        if self.proceed is None:
            raise RuntimeError(f"{self.kind} notice has no action to confirm.")
        return self.proceed()


@dataclass
class QuantityMismatchWarning(Notice):
    kind: str = QUANTITY_MISMATCH


@dataclass
class CompletionEligibleNotice(Notice):
    kind: str = COMPLETION_ELIGIBLE

    @property
    def yield_pct(self) -> float:
        return float(self.data.get("yield_pct", 0.0))


@dataclass
class RollbackIncompleteWarning(Notice):
    kind: str = ROLLBACK_INCOMPLETE
