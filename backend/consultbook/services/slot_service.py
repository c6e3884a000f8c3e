# backend/consultbook/services/slot_service.py
"""
Slot Service.

Turns a professional's weekly schedule into bookable 60-minute slots for a
civil date, expressed as UTC instants, with slots taken by live bookings
removed.
"""

from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Iterator, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..schemas.schedule import WeeklySchedule
from .base import BaseService
from .conflict_checker import Clock, ConflictChecker
from .directory_service import DirectoryService
from .timezone_service import TimezoneService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime


def iter_candidate_slots(
    schedule: Optional[WeeklySchedule],
    target_date: date,
    timezone_str: str,
    slot_minutes: int = 60,
) -> Iterator[CandidateSlot]:
    """
    Yield fixed-length candidate slots for ``target_date`` in start order.

    Each enabled window is walked in ``slot_minutes`` steps and a candidate is
    kept only if it ends inside the window. Local civil times are converted
    with the zone rules for that date; local times skipped by a DST jump
    produce no slot. Overlapping windows never yield the same start twice.
    """
    if schedule is None:
        return
    seen: Set[Tuple[datetime, datetime]] = set()
    candidates: List[CandidateSlot] = []
    for window in schedule.windows_for(target_date.weekday()):
        minute = window.start_minute
        while minute + slot_minutes <= window.end_minute:
            try:
                start = TimezoneService.local_minute_to_utc(target_date, minute, timezone_str)
                end = TimezoneService.local_minute_to_utc(
                    target_date, minute + slot_minutes, timezone_str
                )
            except ValueError:
                logger.debug(
                    "Skipping nonexistent local time %02d:%02d on %s in %s",
                    minute // 60,
                    minute % 60,
                    target_date,
                    timezone_str,
                )
            else:
                if (start, end) not in seen and end > start:
                    seen.add((start, end))
                    candidates.append(CandidateSlot(start=start, end=end))
            minute += slot_minutes
    candidates.sort(key=lambda slot: slot.start)
    yield from candidates


class SlotService(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        directory: Optional[DirectoryService] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db)
        self.directory = directory or DirectoryService(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db, clock=clock)

    @BaseService.measure_operation("list_available_slots")
    def list_available_slots(self, professional_id: str, target_date: date) -> Iterator[CandidateSlot]:
        """
        Available slots for a professional on a civil date.

        Returns a one-shot iterator; callers that need to re-read it should
        materialise it.

        Raises:
            NotFoundException: Unknown professional
        """
        professional = self.directory.get_professional(professional_id)
        candidates = list(
            iter_candidate_slots(
                professional.schedule,
                target_date,
                professional.timezone,
                settings.slot_length_minutes,
            )
        )
        if not candidates:
            return iter(())

        # One query for the day, then per-candidate overlap in memory
        now = self.conflict_checker.now()
        blocking = self.conflict_checker.find_conflicts(
            professional_id,
            candidates[0].start,
            max(slot.end for slot in candidates),
            now=now,
        )
        available = [
            slot
            for slot in candidates
            if not any(b.start_time < slot.end and b.end_time > slot.start for b in blocking)
        ]
        self.logger.debug(
            "Professional %s on %s: %d candidates, %d available",
            professional_id,
            target_date,
            len(candidates),
            len(available),
        )
        return iter(available)
