# -*- coding: utf-8 -*-
"""Local notification collaborator.

Delivery belongs to the platform; the repository only asks for a reminder to
fire after some delay, or to be withdrawn.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationScheduler(Protocol):
    def schedule(
        self,
        identifier: str,
        fire_date: datetime,
        delay_seconds: float,
        title: str,
        body: str,
    ) -> None: ...

    def cancel(self, identifier: str) -> None: ...


class LoggingNotificationScheduler:
    """Default scheduler for headless use: records the request in the log only."""

    def schedule(
        self,
        identifier: str,
        fire_date: datetime,
        delay_seconds: float,
        title: str,
        body: str,
    ) -> None:
        logger.info("Notification %s scheduled in %.1fs (%s)", identifier, delay_seconds, title)

    def cancel(self, identifier: str) -> None:
        logger.info("Notification %s cancelled", identifier)
