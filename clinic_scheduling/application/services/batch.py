import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, TypeVar

from ...exceptions import SchedulingError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class BatchFailure:
    item: Any
    kind: str
    reason: str

    def as_dict(self) -> dict:
        return {"item": self.item, "kind": self.kind, "reason": self.reason}


@dataclass
class BatchResult:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


def run_batch(items: Iterable[T], action: Callable[[T], Any], key: Callable[[T], Any] = lambda item: item) -> BatchResult:
    """Apply ``action`` to every item in order, collecting one outcome per item.

    Scheduling errors and storage errors on one item are recorded and the
    fold moves on; nothing already done is undone.
    """
    result = BatchResult()
    for item in items:
        try:
            result.succeeded.append(action(item))
        except SchedulingError as e:
            logger.info(f"Batch item {key(item)} skipped: {e.kind}: {e.message}")
            result.failed.append(BatchFailure(item=key(item), kind=e.kind, reason=e.message))
        except Exception as e:
            logger.error(f"Batch item {key(item)} failed: {e}")
            result.failed.append(BatchFailure(item=key(item), kind="storage_error", reason=str(e)))
    return result
