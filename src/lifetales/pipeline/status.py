"""Status channel and per-run context.

The pipeline publishes every status transition as a ``StatusEvent``. Any
number of observers can subscribe; an observer that raises is logged and
otherwise ignored so that a broken display never breaks a run.

Example:
    >>> channel = StatusChannel()
    >>> sub = channel.subscribe(lambda event: print(event.message))
    >>> channel.publish(StatusEvent(run_id="abc", status=AgentStatus.ANALYZING))
    Semantic Agent is finding meaning...
    >>> sub.cancel()
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from lifetales.core.models import AgentStatus, StatusEvent

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusEvent], None]


@dataclass
class RunContext:
    """State of a single pipeline run.

    Attributes:
        run_id: Unique id shared by every event of the run.
        status: Most recent status of the run.
        history: Every status event of the run, in order.
        degradations: Names of the stages that fell back during the run.
        started_at: When the run began (UTC).
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: AgentStatus = AgentStatus.IDLE
    history: list[StatusEvent] = field(default_factory=list)
    degradations: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def advance(self, status: AgentStatus) -> StatusEvent:
        """Move the run to ``status`` and record the event."""
        event = StatusEvent(run_id=self.run_id, status=status)
        self.status = status
        self.history.append(event)
        return event

    def mark_degraded(self, stage: str) -> None:
        self.degradations.append(stage)

    @property
    def statuses(self) -> list[AgentStatus]:
        return [event.status for event in self.history]

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal


class Subscription:
    """Handle returned by ``StatusChannel.subscribe``."""

    def __init__(self, channel: "StatusChannel", listener: StatusListener) -> None:
        self._channel = channel
        self._listener = listener
        self.active = True

    def cancel(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self.active:
            self._channel._remove(self._listener)
            self.active = False


class StatusChannel:
    """Fan-out of status events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def publish(self, event: StatusEvent) -> None:
        """Deliver ``event`` to every listener in subscription order."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Status listener failed on {event.status.value}: {type(e).__name__}")

    def _remove(self, listener: StatusListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._listeners)
