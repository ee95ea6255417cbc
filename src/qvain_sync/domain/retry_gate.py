"""Minimum-interval throttle for opportunistic reconciliation passes.

The gate reads the last-sync stamp and decides; nothing is locked between
the check and the pass that follows, so two passes triggered at the same
moment can both get through. The interval only keeps repeated triggers
(login, page reloads) from hammering the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from qvain_sync.domain.errors import TooSoonError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from qvain_sync.domain.ports.unit_of_work import DatasetUnitOfWork

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class RetryGate:
    min_interval: timedelta
    clock: Callable[[], datetime] = field(default=_utcnow)

    def check(self, last_sync: datetime | None) -> None:
        """Raise :class:`TooSoonError` if ``last_sync`` is too recent."""
        if last_sync is None:
            return
        elapsed = self.clock() - last_sync
        if elapsed < self.min_interval:
            remaining = (self.min_interval - elapsed).total_seconds()
            log.debug("refusing sync, last one %.1fs ago", elapsed.total_seconds())
            raise TooSoonError(retry_after=remaining)

    def check_user(
        self,
        uid: UUID,
        unit_of_work_factory: Callable[[], DatasetUnitOfWork],
    ) -> datetime | None:
        """Check the user's stored stamp and return it for use as the lower bound."""
        with unit_of_work_factory() as uow:
            last_sync = uow.repositories.sync_stamps.get_last_sync(uid)
        self.check(last_sync)
        return last_sync
