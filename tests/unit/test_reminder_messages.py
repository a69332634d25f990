import pytest
from datetime import datetime

from kpiwatch.models.enums import Interval, ReminderCategory, UrgencyLabel
from kpiwatch.models.kpi import KPI, Recipient
from kpiwatch.schemas.reminder import Reminder
from kpiwatch.services.reminders.messages import MessageBuilder, load_templates


def make_reminder(category, urgency=100, days_overdue=0, days_until_due=0):
    kpi = KPI(id=42, name="Umsatz", interval=Interval.MONTHLY)
    return Reminder(
        kpi=kpi,
        category=category,
        urgency=urgency,
        escalation_level=2,
        days_overdue=days_overdue,
        days_until_due=days_until_due,
        due_date=datetime(2024, 3, 1),
        period="März 2024",
    )


class TestTemplates:

    def test_bundled_templates_cover_all_categories(self):
        templates = load_templates()

        for language in ("de", "en"):
            for category in ReminderCategory:
                assert category.value in templates[language]["templates"]

    def test_missing_file_gives_empty_templates(self, tmp_path):
        assert load_templates(tmp_path / "missing.yaml") == {}


class TestMessageBuilder:

    @pytest.fixture
    def builder(self):
        return MessageBuilder(default_language="de")

    @pytest.fixture
    def recipient(self):
        return Recipient(id=1, first_name="Anna", last_name="Schmidt", title="Frau")

    def test_overdue_message_in_german(self, builder, recipient):
        message = builder.create_message(make_reminder(ReminderCategory.OVERDUE, days_overdue=5), recipient)

        assert message.title == "KPI 'Umsatz' ist überfällig"
        assert message.body.startswith("Hallo Anna,\n\n")
        assert "seit 5 Tagen" in message.body
        assert message.urgency is UrgencyLabel.CRITICAL
        assert message.type is ReminderCategory.OVERDUE
        assert message.kpi_id == 42

    def test_upcoming_message_in_english(self, builder, recipient):
        reminder = make_reminder(ReminderCategory.UPCOMING, urgency=15, days_until_due=2)
        message = builder.create_message(reminder, recipient, language="en")

        assert "due in 2 days" in message.body
        assert message.body.startswith("Hello Anna,")
        assert message.urgency is UrgencyLabel.LOW

    def test_formal_greeting(self, builder, recipient):
        message = builder.create_message(make_reminder(ReminderCategory.DUE_TODAY), recipient, style="formal")
        assert message.body.startswith("Hallo Frau Schmidt,")

    def test_greeting_without_recipient(self, builder):
        message = builder.create_message(make_reminder(ReminderCategory.DUE_TODAY))
        assert message.body.startswith("Hallo Benutzer,")

    def test_unknown_language_falls_back_to_default(self, builder, recipient):
        message = builder.create_message(make_reminder(ReminderCategory.DUE_TODAY), recipient, language="fr")
        assert message.title == "KPI 'Umsatz' ist heute fällig"

    def test_snooze_comes_first_for_overdue(self, builder):
        actions = builder.create_message(make_reminder(ReminderCategory.CRITICAL, days_overdue=10)).actions

        assert [action.action for action in actions] == ["snooze_reminder", "add_value", "view"]
        assert actions[0].duration_hours == 24
        assert actions[1].url == "/kpi/42/add-value"

    def test_no_snooze_before_due(self, builder):
        actions = builder.create_message(make_reminder(ReminderCategory.UPCOMING, days_until_due=1)).actions
        assert [action.action for action in actions] == ["add_value", "view"]

    def test_context(self, builder):
        message = builder.create_message(make_reminder(ReminderCategory.OVERDUE, days_overdue=3))

        assert message.context["days_since_due"] == 3
        assert message.context["period"] == "März 2024"
        assert message.context["escalation_level"] == 2

    def test_name_placeholder_alias(self):
        templates = {"de": {"templates": {"due_today": {"title": "{name}", "body": "{kpi_name}"}}}}
        builder = MessageBuilder(templates=templates, default_language="de")

        message = builder.create_message(make_reminder(ReminderCategory.DUE_TODAY))

        assert message.title == "Umsatz"
        assert message.body.endswith("Umsatz")

    def test_generic_message_without_template(self):
        builder = MessageBuilder(templates={}, default_language="de")
        message = builder.create_message(make_reminder(ReminderCategory.DUE_TODAY))

        assert message.title == "KPI-Erinnerung: Umsatz"
