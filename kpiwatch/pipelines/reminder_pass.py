"""Batch reminder pass: evaluate KPIs, throttle, render and hand off notifications."""
import asyncio
import sys
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import yaml

from kpiwatch.core.config import Settings, get_settings
from kpiwatch.core.logging import get_logger, setup_logging
from kpiwatch.models.enums import NotifyRole, ReminderCategory
from kpiwatch.models.kpi import KPI, KPIValue, Recipient
from kpiwatch.schemas.reminder import Notification, Reminder
from kpiwatch.services.calendar.periods import DueDateResolver
from kpiwatch.services.lookup.adapters import CachedValueLookup, InMemoryValueLookup, ValueLookup, kpi_key
from kpiwatch.services.reminders.engine import ReminderEngine
from kpiwatch.services.reminders.messages import MessageBuilder

logger = get_logger(__name__)


class NotificationSink(ABC):
    """Delivery mechanism for reminders; transport is up to the implementation."""

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Deliver one notification, raising on failure."""
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log instead of sending them."""

    async def deliver(self, notification: Notification) -> None:
        recipient = notification.recipient.email if notification.recipient else "unassigned"
        logger.info(f"[{notification.message.urgency.value}] {recipient}: {notification.message.title}")


def _owner_key(kpi: KPI) -> Optional[Hashable]:
    owner = kpi.owner
    if owner is None:
        return None
    return owner.id if owner.id is not None else owner.email


class ReminderPipeline:
    """One evaluation pass over all KPIs, grouped by owner."""

    def __init__(
        self,
        lookup: ValueLookup,
        sink: NotificationSink,
        settings: Optional[Settings] = None,
        due_date_resolver: Optional[DueDateResolver] = None,
        message_builder: Optional[MessageBuilder] = None
    ):
        self.settings = settings or get_settings()
        self.lookup = lookup
        self.sink = sink
        self.due_date_resolver = due_date_resolver
        self.message_builder = message_builder or MessageBuilder(default_language=self.settings.DEFAULT_LANGUAGE)

        # Last successful delivery per KPI, used for anti-spam throttling across passes
        self.last_sent: Dict[Hashable, datetime] = {}

    def group_by_owner(self, kpis: Sequence[KPI]) -> Dict[Hashable, Tuple[Optional[Recipient], List[KPI]]]:
        groups: Dict[Hashable, Tuple[Optional[Recipient], List[KPI]]] = {}
        for kpi in kpis:
            key = _owner_key(kpi)
            if key not in groups:
                groups[key] = (kpi.owner, [])
            groups[key][1].append(kpi)
        return groups

    def build_notification(
        self,
        engine: ReminderEngine,
        reminder: Reminder,
        recipient: Optional[Recipient],
        language: Optional[str] = None,
        style: str = "informal"
    ) -> Notification:
        escalation = None
        if reminder.category in (ReminderCategory.OVERDUE, ReminderCategory.CRITICAL):
            escalation = engine.calculate_escalation(reminder.days_overdue)

        return Notification(
            recipient=recipient,
            reminder=reminder,
            message=self.message_builder.create_message(reminder, recipient, language, style),
            escalation=escalation,
        )

    async def _deliver(self, notification: Notification) -> bool:
        kpi_name = notification.reminder.kpi.name
        try:
            await self.sink.deliver(notification)
            logger.debug(f"Delivered {notification.reminder.category.value} reminder for '{kpi_name}'")
            return True
        except Exception as e:
            logger.error(f"Failed to deliver reminder for '{kpi_name}': {e}")
            return False

    async def run_pass(
        self,
        kpis: Sequence[KPI],
        now: Optional[datetime] = None,
        preferences: Optional[Dict[Hashable, Dict[str, Any]]] = None,
        language: Optional[str] = None,
        style: str = "informal"
    ) -> Dict[str, int]:
        """
        Evaluate all KPIs and deliver the resulting reminders.

        Args:
            kpis: KPIs to evaluate
            now: Reference instant for the whole pass
            preferences: Reminder preferences keyed by owner id (or email)
            language: Template language
            style: Greeting style, "informal" or "formal"

        Returns:
            Counts of sent, failed, skipped and escalated reminders
        """
        now = now or datetime.now()
        preferences = preferences or {}
        stats = {"sent": 0, "failed": 0, "skipped": 0, "escalations": 0}

        # One cache per pass; results never outlive it
        engine = ReminderEngine(CachedValueLookup(self.lookup), self.settings, self.due_date_resolver)

        logger.info(f"Starting reminder pass over {len(kpis)} KPIs")

        for owner_key, (recipient, owner_kpis) in self.group_by_owner(kpis).items():
            if owner_key is None:
                logger.warning(f"Skipping {len(owner_kpis)} KPIs without owner")
                stats["skipped"] += len(owner_kpis)
                continue

            owner_preferences = preferences.get(owner_key, {})
            groups = engine.get_kpis_needing_reminder(owner_kpis, now)

            notifications = []
            for category in ReminderCategory:
                for reminder in groups[category]:
                    decision = engine.throttle(
                        reminder, self.last_sent.get(kpi_key(reminder.kpi)), owner_preferences, now
                    )
                    if not decision.send:
                        logger.debug(f"Reminder for '{reminder.kpi.name}' skipped: {decision.reason}")
                        stats["skipped"] += 1
                        continue
                    notifications.append(self.build_notification(engine, reminder, recipient, language, style))

            results = await asyncio.gather(*(self._deliver(notification) for notification in notifications))

            for notification, delivered in zip(notifications, results):
                if not delivered:
                    stats["failed"] += 1
                    continue

                stats["sent"] += 1
                self.last_sent[kpi_key(notification.reminder.kpi)] = now
                escalation = notification.escalation
                if escalation and NotifyRole.TEAM_LEAD in escalation.notify_roles:
                    stats["escalations"] += 1

        logger.info(f"Reminder pass completed: {stats}")
        return stats


def load_dataset(path: Path) -> Tuple[List[KPI], List[KPIValue]]:
    """
    Load KPIs and values from a YAML file.

    Values reference their KPI by ``kpi_id``.
    """
    with open(path, 'r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or {}

    kpis = [KPI(**raw) for raw in data.get("kpis", [])]
    by_id = {kpi.id: kpi for kpi in kpis}

    values = []
    for raw in data.get("values", []):
        raw = dict(raw)
        kpi = by_id.get(raw.pop("kpi_id", None))
        if kpi is None:
            logger.warning(f"Value for period {raw.get('period')} references unknown KPI, ignoring")
            continue
        values.append(KPIValue(kpi=kpi, **raw))

    return kpis, values


async def main():
    """Main entry point for the reminder pass."""
    setup_logging()

    if len(sys.argv) < 2:
        logger.error("Usage: python -m kpiwatch.pipelines.reminder_pass <dataset.yaml>")
        return

    kpis, values = load_dataset(Path(sys.argv[1]))
    pipeline = ReminderPipeline(InMemoryValueLookup(values), LoggingNotificationSink())
    await pipeline.run_pass(kpis)


if __name__ == "__main__":
    asyncio.run(main())
