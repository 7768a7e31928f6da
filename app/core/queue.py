"""Per-stage waiting lists derived from the visit set.

Read-only. Results are cached on the content of the visits (id, stage,
priority, stage timer, version) so recomputing on every poll is cheap; wait
times are computed afterwards against the caller's clock.
"""
from collections import Counter
from functools import lru_cache
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from app.models.all_models import VisitPriority, VisitStage, as_clinic_time, clinic_now

PRIORITY_RANK = {
    VisitPriority.EMERGENCY.value: 3,
    VisitPriority.URGENT.value: 2,
    VisitPriority.NORMAL.value: 1,
}
UNKNOWN_PRIORITY_RANK = 0
# clients never poll less often than this
MAX_REFRESH_SECONDS = 60


class QueueEntry(NamedTuple):
    visit_id: str
    patient_name: str
    queue_number: int
    stage: str
    priority: str
    stage_start_time: object
    version: int


def priority_rank(priority) -> int:
    value = getattr(priority, "value", priority)
    return PRIORITY_RANK.get(value, UNKNOWN_PRIORITY_RANK)


def _stage_value(stage) -> str:
    return getattr(stage, "value", stage)


def snapshot(visits: Iterable) -> Tuple[QueueEntry, ...]:
    return tuple(
        QueueEntry(
            visit_id=str(visit.id),
            patient_name=visit.patient_name,
            queue_number=visit.queue_number or 0,
            stage=_stage_value(visit.stage),
            priority=getattr(visit.priority, "value", visit.priority),
            stage_start_time=as_clinic_time(visit.stage_start_time),
            version=visit.version or 0,
        )
        for visit in visits
    )


def _sort_key(entry: QueueEntry):
    return (-priority_rank(entry.priority), entry.stage_start_time, entry.visit_id)


@lru_cache(maxsize=128)
def _project(entries: Tuple[QueueEntry, ...], stage: str) -> Tuple[QueueEntry, ...]:
    return tuple(sorted((e for e in entries if e.stage == stage), key=_sort_key))


def build_queue(visits: Iterable, stage) -> List[QueueEntry]:
    """Visits in ``stage``: highest priority first, then longest waiting."""
    return list(_project(snapshot(visits), _stage_value(stage)))


def stage_counts(visits: Iterable) -> Dict[str, int]:
    counts = Counter(_stage_value(visit.stage) for visit in visits)
    return {stage.value: counts.get(stage.value, 0) for stage in VisitStage if stage != VisitStage.COMPLETED}


def wait_minutes(entry: QueueEntry, now: Optional[object] = None) -> int:
    now = as_clinic_time(now or clinic_now())
    elapsed = now - entry.stage_start_time
    return max(0, int(elapsed.total_seconds() // 60))
