"""Progress notifications for one fetch invocation.

Milestones are forwarded to a caller-supplied sink together with the
caller's progress token. Sink failures never affect the fetch.
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from .models import utc_now

logger = logging.getLogger(__name__)


ProgressSink = Callable[[Any, float, Optional[float], Optional[str]], Union[None, Awaitable[None]]]

PROGRESS_TOTAL = 100.0


class ProgressMilestone(Enum):
    """Points in the pipeline that are reported, with their progress value."""
    STARTED = 0
    STRATEGY_SELECTED = 10
    HTTP_ATTEMPT_COMPLETED = 40
    NAVIGATION_STARTED = 50
    BROWSER_ATTEMPT_COMPLETED = 90
    DONE = 100


@dataclass
class ProgressEvent:
    """One reported milestone."""
    milestone: ProgressMilestone
    message: str
    timestamp: datetime


class ProgressReporter:
    """Forwards milestones to a sink when a progress token was supplied."""

    def __init__(self, token: Any = None, sink: Optional[ProgressSink] = None):
        self.token = token
        self.sink = sink
        self.events: List[ProgressEvent] = []

    @property
    def enabled(self) -> bool:
        return self.token is not None and self.sink is not None

    async def report(self, milestone: ProgressMilestone, message: str) -> None:
        """Record a milestone and notify the sink, swallowing sink errors."""
        self.events.append(ProgressEvent(milestone=milestone, message=message, timestamp=utc_now()))
        logger.debug(f"Progress {milestone.value}/{PROGRESS_TOTAL:.0f}: {message}")

        if not self.enabled:
            return

        try:
            result = self.sink(self.token, float(milestone.value), PROGRESS_TOTAL, message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug(f"Progress notification failed: {e}")
