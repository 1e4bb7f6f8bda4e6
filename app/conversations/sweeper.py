"""Auto-release of conversations abandoned in human mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from ..core.scheduler import PeriodicRunner
from .models import utcnow
from .repository import ConversationRepository
from .state import ConversationStateMachine

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 30
DEFAULT_INTERVAL_SECONDS = 300
JOB_NAME = "conversation-auto-release"


@dataclass
class SweepReport:
    released: list[UUID] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0


class AutoReleaseSweeper:
    """Release ``human`` conversations idle for longer than the timeout.

    Any number of sweepers may run at once: each release is the conditional
    ``human -> ai`` transition with ``last_activity_at < cutoff`` as an extra
    precondition, so exactly one of them sends the handback message.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        state_machine: ConversationStateMachine,
        *,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        batch_limit: int = 100,
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self.timeout = timedelta(minutes=timeout_minutes)
        self.interval_seconds = interval_seconds
        self.batch_limit = batch_limit
        self._runner: PeriodicRunner | None = None

    def run_once(self, now: datetime | None = None) -> SweepReport:
        now = now or utcnow()
        cutoff = now - self.timeout
        report = SweepReport()
        candidates = self._repository.find_idle_human(cutoff, limit=self.batch_limit)
        if not candidates:
            logger.debug("No idle human-mode conversations")
            return report
        logger.info("Found %d idle human-mode conversation(s)", len(candidates))
        for conversation in candidates:
            try:
                result = self._state_machine.release(
                    conversation.tenant_id,
                    conversation.id,
                    reason="timeout",
                    now=now,
                    last_activity_before=cutoff,
                )
            except Exception:
                logger.exception("Auto-release failed for conversation %s", conversation.id)
                report.failed += 1
                continue
            if result.applied:
                report.released.append(conversation.id)
            else:
                report.skipped += 1
        logger.info(
            "Auto-release finished: %d released, %d skipped, %d failed",
            len(report.released),
            report.skipped,
            report.failed,
        )
        return report

    def start(self, runner: PeriodicRunner) -> None:
        self._runner = runner
        runner.start(JOB_NAME, self.run_once, self.interval_seconds)

    def stop(self) -> None:
        if self._runner is not None:
            self._runner.stop(JOB_NAME)
            self._runner = None
