"""Notification escalation: who gets which channel, in what order.

Every contact gets an SMS, contacts with an email address also get an
email, and only the top urgency tiers (priority <= 2 by default) get an
interruptive voice call. Sends go out concurrently but the returned records
keep contact priority order. A failing channel never stops the others.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Sequence

from sos_response.errors import NoContactsConfigured
from sos_response.models import (
    Channel,
    Contact,
    DeliveryOutcome,
    NotificationRecord,
    SendOutcome,
    utcnow,
)
from sos_response.stores import MessageSender
from sos_response.templates import AlertMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryAttempt:
    contact: Contact
    channel: Channel


@dataclass(frozen=True)
class EscalationResult:
    records: List[NotificationRecord]

    @property
    def attempts(self) -> int:
        return len(self.records)

    @property
    def sent(self) -> int:
        return sum(1 for record in self.records if record.status is DeliveryOutcome.SENT)

    @property
    def failed(self) -> int:
        return self.attempts - self.sent

    def summary(self) -> dict:
        return {"attempts": self.attempts, "sent": self.sent, "failed": self.failed}


class NotificationEscalationEngine:
    def __init__(
        self,
        sender: MessageSender,
        call_priority_cutoff: int = 2,
        max_concurrency: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.sender = sender
        self.call_priority_cutoff = call_priority_cutoff
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock

    def plan(self, contacts: Iterable[Contact], include_calls: bool = True) -> List[DeliveryAttempt]:
        """Delivery plan in contact priority order, channels as sms, email, call."""
        attempts = []
        for contact in sorted(contacts, key=lambda c: c.priority):
            attempts.append(DeliveryAttempt(contact, Channel.SMS))
            if contact.email:
                attempts.append(DeliveryAttempt(contact, Channel.EMAIL))
            if include_calls and contact.priority <= self.call_priority_cutoff:
                attempts.append(DeliveryAttempt(contact, Channel.CALL))
        return attempts

    async def escalate(self, contacts: Sequence[Contact], message: AlertMessage) -> EscalationResult:
        """Full escalation: SMS, email and calls for the top tiers."""
        if not contacts:
            raise NoContactsConfigured("no emergency contacts configured")
        return await self.dispatch(self.plan(contacts), message)

    async def relieve(self, contacts: Sequence[Contact], message: AlertMessage) -> EscalationResult:
        """All-clear message: SMS and email only, never a call."""
        if not contacts:
            raise NoContactsConfigured("no emergency contacts configured")
        return await self.dispatch(self.plan(contacts, include_calls=False), message)

    async def dispatch(self, plan: Sequence[DeliveryAttempt], message: AlertMessage) -> EscalationResult:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        # gather preserves argument order, so records follow the plan.
        records = await asyncio.gather(*(self._attempt(item, message, semaphore) for item in plan))
        result = EscalationResult(records=list(records))
        logger.info("ESCALATION_DISPATCHED", extra=result.summary())
        return result

    async def _attempt(
        self,
        attempt: DeliveryAttempt,
        message: AlertMessage,
        semaphore: asyncio.Semaphore,
    ) -> NotificationRecord:
        contact = attempt.contact
        async with semaphore:
            if attempt.channel is Channel.SMS:
                outcome = await self.send_sms(contact.phone, message.sms)
            elif attempt.channel is Channel.EMAIL:
                outcome = await self.send_email(contact.email or "", message.email_subject, message.email_body)
            else:
                outcome = await self.send_call(contact.phone, message.call)

        if not outcome.ok:
            logger.warning(
                "NOTIFICATION_SEND_FAILED",
                extra={"contact_id": contact.contact_id, "channel": attempt.channel.value, "error": outcome.error},
            )
        return NotificationRecord(
            contact_id=contact.contact_id,
            contact_name=contact.name,
            channel=attempt.channel,
            sent_at=self.clock(),
            status=DeliveryOutcome.SENT if outcome.ok else DeliveryOutcome.FAILED,
            reference=outcome.reference,
            error=outcome.error,
        )

    # Channel primitives, also used for responders and authorities. They
    # never raise: provider errors come back as failed outcomes.

    async def send_sms(self, phone: str, text: str) -> SendOutcome:
        return await self._guarded(Channel.SMS, lambda: self.sender.send_sms(phone, text))

    async def send_call(self, phone: str, text: str) -> SendOutcome:
        return await self._guarded(Channel.CALL, lambda: self.sender.send_call(phone, text))

    async def send_email(self, address: str, subject: str, body: str) -> SendOutcome:
        return await self._guarded(Channel.EMAIL, lambda: self.sender.send_email(address, subject, body))

    @staticmethod
    async def _guarded(channel: Channel, send: Callable[[], Awaitable[SendOutcome]]) -> SendOutcome:
        try:
            return await send()
        except Exception as exc:
            logger.warning("SENDER_RAISED", extra={"channel": channel.value, "error": str(exc)})
            return SendOutcome.failed(str(exc))
