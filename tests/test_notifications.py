import asyncio

import pytest

from helpers import TWO_CONTACTS
from sos_response.errors import NoContactsConfigured
from sos_response.models import Channel, Contact, DeliveryOutcome, SendOutcome
from sos_response.notifications import NotificationEscalationEngine
from sos_response.stores import MessageSender, OutboxMessageSender
from sos_response.templates import AlertMessage

MESSAGE = AlertMessage(sms="help", call="please call", email_subject="Help", email_body="<p>help</p>")


def _channels(records, contact_id: str) -> list:
    return [r.channel for r in records if r.contact_id == contact_id]


def test_priority_one_with_email_gets_three_channels_priority_three_gets_sms() -> None:
    sender = OutboxMessageSender()
    result = asyncio.run(NotificationEscalationEngine(sender).escalate(TWO_CONTACTS, MESSAGE))

    assert result.attempts == 4
    assert _channels(result.records, "CON-A") == [Channel.SMS, Channel.EMAIL, Channel.CALL]
    assert _channels(result.records, "CON-B") == [Channel.SMS]
    assert all(r.status is DeliveryOutcome.SENT for r in result.records)
    assert [m.channel for m in sender.sent_to("+15550000100")] == ["sms", "call"]
    assert sender.sent_to("a@example.com")[0].subject == "Help"


def test_attempt_count_is_between_one_and_three_per_contact() -> None:
    contacts = [
        Contact(f"C{i}", f"Contact {i}", f"+1555000{i:04d}", f"c{i}@example.com" if i % 2 else None, priority=i % 5 + 1)
        for i in range(10)
    ]
    result = asyncio.run(NotificationEscalationEngine(OutboxMessageSender()).escalate(contacts, MESSAGE))

    assert len(contacts) <= result.attempts <= 3 * len(contacts)
    for contact in contacts:
        channels = _channels(result.records, contact.contact_id)
        assert Channel.SMS in channels
        assert (Channel.CALL in channels) == (contact.priority <= 2)
        assert (Channel.EMAIL in channels) == bool(contact.email)


def test_records_follow_priority_order_stably() -> None:
    contacts = [
        Contact("late", "Late", "+15550000003", priority=3),
        Contact("first-tie", "First tie", "+15550000001", priority=1),
        Contact("second-tie", "Second tie", "+15550000002", priority=1),
    ]
    engine = NotificationEscalationEngine(OutboxMessageSender())

    records = asyncio.run(engine.escalate(contacts, MESSAGE)).records

    assert [r.contact_id for r in records] == ["first-tie", "first-tie", "second-tie", "second-tie", "late"]


class SlowFirstSender(MessageSender):
    """Completes sends for earlier phones later, to shuffle completion order."""

    def __init__(self) -> None:
        self.completed = []

    async def _send(self, to: str) -> SendOutcome:
        await asyncio.sleep(0.05 if to.endswith("1") else 0.0)
        self.completed.append(to)
        return SendOutcome.sent(f"ref-{to}")

    async def send_sms(self, phone, text):
        return await self._send(phone)

    async def send_call(self, phone, text):
        return await self._send(phone)

    async def send_email(self, address, subject, body):
        return await self._send(address)


def test_out_of_order_completion_keeps_record_order() -> None:
    contacts = [
        Contact("one", "One", "+15550000001", priority=1),
        Contact("two", "Two", "+15550000002", priority=2),
    ]
    sender = SlowFirstSender()

    records = asyncio.run(NotificationEscalationEngine(sender).escalate(contacts, MESSAGE)).records

    assert sender.completed[0] == "+15550000002"
    assert [(r.contact_id, r.channel) for r in records] == [
        ("one", Channel.SMS),
        ("one", Channel.CALL),
        ("two", Channel.SMS),
        ("two", Channel.CALL),
    ]


def test_failed_sends_are_recorded_and_do_not_stop_others() -> None:
    sender = OutboxMessageSender(failing={"+15550000100"})
    result = asyncio.run(NotificationEscalationEngine(sender).escalate(TWO_CONTACTS, MESSAGE))

    by_channel = {(r.contact_id, r.channel): r for r in result.records}
    assert by_channel[("CON-A", Channel.SMS)].status is DeliveryOutcome.FAILED
    assert by_channel[("CON-A", Channel.CALL)].status is DeliveryOutcome.FAILED
    assert by_channel[("CON-A", Channel.EMAIL)].status is DeliveryOutcome.SENT
    assert by_channel[("CON-B", Channel.SMS)].status is DeliveryOutcome.SENT
    assert result.summary() == {"attempts": 4, "sent": 2, "failed": 2}
    assert by_channel[("CON-A", Channel.SMS)].error == "sms delivery rejected"


class BrokenSender(MessageSender):
    async def send_sms(self, phone, text):
        raise RuntimeError("provider down")

    async def send_call(self, phone, text):
        return SendOutcome.failed("busy")

    def send_email(self, address, subject, body):
        raise ConnectionError("smtp unreachable")


def test_sender_exceptions_become_failed_records() -> None:
    result = asyncio.run(NotificationEscalationEngine(BrokenSender()).escalate(TWO_CONTACTS, MESSAGE))

    assert result.attempts == 4
    assert result.sent == 0
    assert {r.error for r in result.records} == {"provider down", "busy", "smtp unreachable"}


def test_no_contacts_is_reported() -> None:
    engine = NotificationEscalationEngine(OutboxMessageSender())
    with pytest.raises(NoContactsConfigured):
        asyncio.run(engine.escalate([], MESSAGE))


def test_relief_never_calls_and_ignores_priority() -> None:
    contacts = list(TWO_CONTACTS) + [Contact("CON-C", "Contact C", "+15550000300", "c@example.com", priority=5)]
    result = asyncio.run(NotificationEscalationEngine(OutboxMessageSender()).relieve(contacts, MESSAGE))

    assert [(r.contact_id, r.channel) for r in result.records] == [
        ("CON-A", Channel.SMS),
        ("CON-A", Channel.EMAIL),
        ("CON-B", Channel.SMS),
        ("CON-C", Channel.SMS),
        ("CON-C", Channel.EMAIL),
    ]
    assert result.attempts == 5


def test_call_cutoff_is_configurable() -> None:
    engine = NotificationEscalationEngine(OutboxMessageSender(), call_priority_cutoff=3)
    plan = engine.plan(TWO_CONTACTS)
    assert [(a.contact.contact_id, a.channel) for a in plan][-1] == ("CON-B", Channel.CALL)
