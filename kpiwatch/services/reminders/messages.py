"""Localized, personalized reminder content."""
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from kpiwatch.core.config import get_settings
from kpiwatch.core.logging import get_logger
from kpiwatch.models.enums import ReminderCategory
from kpiwatch.models.kpi import Recipient
from kpiwatch.schemas.reminder import Reminder, ReminderAction, ReminderMessage
from kpiwatch.services.reminders.engine import urgency_label

logger = get_logger(__name__)

TEMPLATES_PATH = Path(__file__).parent.parent.parent / "lexicon" / "reminder_templates.yaml"

SNOOZE_HOURS = 24


def load_templates(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load reminder templates from YAML file, keyed by language."""
    config_path = path or TEMPLATES_PATH

    try:
        with open(config_path, 'r', encoding='utf-8') as file:
            config = yaml.safe_load(file) or {}
            return config.get("languages", {})
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load reminder templates: {e}")
        return {}


class MessageBuilder:
    """Turns a Reminder into title, body, actions and context for one recipient."""

    def __init__(self, templates: Optional[Dict[str, Any]] = None, default_language: Optional[str] = None):
        self.templates = templates if templates is not None else load_templates()
        self.default_language = default_language or get_settings().DEFAULT_LANGUAGE

    def _language_pack(self, language: Optional[str]) -> Dict[str, Any]:
        language = language or self.default_language
        if language in self.templates:
            return self.templates[language]

        logger.warning(f"No reminder templates for language '{language}', using '{self.default_language}'")
        return self.templates.get(self.default_language, {})

    def salutation(self, recipient: Optional[Recipient], style: str = "informal", fallback: str = "") -> str:
        """First name, or title plus last name in the formal style."""
        if recipient is None:
            return fallback

        if style == "formal" and recipient.last_name:
            if recipient.title:
                return f"{recipient.title} {recipient.last_name}"
            return recipient.full_name or recipient.last_name

        return recipient.first_name or fallback

    def render(self, reminder: Reminder, language: Optional[str] = None) -> Dict[str, str]:
        """Title and body before personalization."""
        pack = self._language_pack(language)
        template = pack.get("templates", {}).get(reminder.category.value)
        kpi_name = reminder.kpi.name

        if reminder.category is ReminderCategory.UPCOMING:
            days = reminder.days_until_due
        else:
            days = reminder.days_overdue

        if not template:
            return {
                "title": f"KPI-Erinnerung: {kpi_name}",
                "body": f"Bitte überprüfen Sie den Status Ihrer KPI '{kpi_name}'.",
            }

        values = {"kpi_name": kpi_name, "name": kpi_name, "days": days}
        return {
            "title": template["title"].format(**values),
            "body": template["body"].format(**values),
        }

    def build_actions(self, reminder: Reminder, language: Optional[str] = None) -> List[ReminderAction]:
        labels = self._language_pack(language).get("actions", {})
        kpi_id = reminder.kpi.id

        actions = [
            ReminderAction(
                action="add_value",
                label=labels.get("add_value", "Wert erfassen"),
                style="primary",
                url=f"/kpi/{kpi_id}/add-value",
            ),
            ReminderAction(
                action="view",
                label=labels.get("view", "KPI anzeigen"),
                style="secondary",
                url=f"/kpi/{kpi_id}",
            ),
        ]

        if reminder.category in (ReminderCategory.OVERDUE, ReminderCategory.CRITICAL):
            actions.insert(0, ReminderAction(
                action="snooze_reminder",
                label=labels.get("snooze", "Erinnerung stummschalten (24h)"),
                style="muted",
                duration_hours=SNOOZE_HOURS,
            ))

        return actions

    def create_message(
        self,
        reminder: Reminder,
        recipient: Optional[Recipient] = None,
        language: Optional[str] = None,
        style: str = "informal"
    ) -> ReminderMessage:
        """
        Build the complete message for one reminder.

        Args:
            reminder: Reminder produced by the reminder engine
            recipient: Person addressed in the greeting
            language: Template language, e.g. "de" or "en"
            style: "informal" (first name) or "formal" (title and last name)

        Returns:
            ReminderMessage ready to hand to a notification sink
        """
        pack = self._language_pack(language)
        content = self.render(reminder, language)

        name = self.salutation(recipient, style, fallback=pack.get("fallback_name", "Benutzer"))
        greeting = pack.get("greeting", "Hallo {recipient},").format(recipient=name)

        return ReminderMessage(
            title=content["title"],
            body=f"{greeting}\n\n{content['body']}",
            urgency=urgency_label(reminder.urgency),
            type=reminder.category,
            kpi_id=reminder.kpi.id,
            actions=self.build_actions(reminder, language),
            context={
                "days_since_due": reminder.days_overdue or None,
                "days_until_due": reminder.days_until_due or None,
                "period": reminder.period,
                "escalation_level": reminder.escalation_level,
                "due_date": reminder.due_date.isoformat(),
            },
        )
