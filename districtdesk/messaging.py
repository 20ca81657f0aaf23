"""
messaging.py — Bulk Messaging to Allocated Consumers & Message History
District Data Console

A send resolves the consumer mobile numbers of one district (or one village)
the sender can see, posts them to the messaging webhook in chunks and keeps
a history record under messages/. Without a webhook URL the send is only
recorded, every recipient counted as delivered.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import httpx
from loguru import logger

from districtdesk.allocation import AllocationService
from districtdesk.config import settings
from districtdesk.database import DocumentStore
from districtdesk.errors import PermissionDenied, ValidationFailed
from districtdesk.hierarchy import manageable_users
from districtdesk.models import MessageRecord, MessageType, User
from districtdesk.models.db_models import MESSAGES_COLLECTION, message_path, to_document
from districtdesk.utils import MessageRequest, utcnow
from districtdesk.visibility import list_records

MOBILE_MIN_DIGITS = 10
MOBILE_MAX_DIGITS = 12


# ── Mobile numbers ────────────────────────────────────────────────────────────
def _digits(mobile) -> str:
    return re.sub(r"\D", "", str(mobile or ""))


def validate_mobile_number(mobile) -> bool:
    return MOBILE_MIN_DIGITS <= len(_digits(mobile)) <= MOBILE_MAX_DIGITS


def format_mobile_number(mobile, country_code: Optional[str] = None) -> str:
    """Digits only; a bare 10-digit number gets the country code prefixed."""
    digits = _digits(mobile)
    if len(digits) == MOBILE_MIN_DIGITS:
        digits = (country_code or settings.MOBILE_COUNTRY_CODE) + digits
    return digits


async def collect_recipients(
    store: DocumentStore, district: str, village: Optional[str] = None
) -> List[str]:
    """Distinct, formatted mobile numbers of every record in the partition."""
    recipients = []
    seen = set()
    invalid = 0
    for record in await list_records(store, district, village):
        raw = record.get("mobileNumber")
        if not raw or not str(raw).strip():
            continue
        if not validate_mobile_number(raw):
            invalid += 1
            continue
        number = format_mobile_number(raw)
        if number not in seen:
            seen.add(number)
            recipients.append(number)
    if invalid:
        logger.warning(f"{district}/{village or '*'}: skipped {invalid} invalid mobile numbers.")
    return recipients


# ── Webhook dispatch ──────────────────────────────────────────────────────────
def build_webhook_payload(
    message_type: MessageType,
    message: str,
    recipients: List[str],
    location: str,
    sender: str,
) -> dict:
    now = utcnow()
    return {
        "messageType": message_type.value,
        "message": message,
        "recipients": recipients,
        "location": location,
        "sender": sender,
        "timestamp": now.isoformat(),
        "batchId": f"batch_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}",
        "totalRecipients": len(recipients),
    }


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "sent"
        return "partial" if self.sent else "failed"


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def dispatch_messages(
    recipients: List[str],
    message: str,
    message_type: MessageType,
    location: str,
    sender: str,
    webhook_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    batch_size: Optional[int] = None,
) -> DispatchResult:
    """
    POST the payload once per chunk of recipients. A chunk the webhook
    rejects, or that never reaches it, counts as failed; later chunks are
    still attempted.
    """
    url = webhook_url or settings.MESSAGE_WEBHOOK_URL
    result = DispatchResult()
    if not url:
        logger.info(
            f"No messaging webhook configured; recording {message_type.value} to "
            f"{len(recipients)} recipients in {location} without delivery."
        )
        result.sent = len(recipients)
        return result

    size = batch_size or settings.MESSAGE_BATCH_SIZE
    async with httpx.AsyncClient(timeout=settings.MESSAGE_WEBHOOK_TIMEOUT, transport=transport) as client:
        for chunk in _chunks(recipients, size):
            payload = build_webhook_payload(message_type, message, chunk, location, sender)
            try:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
                result.sent += len(chunk)
            except httpx.HTTPError as e:
                logger.error(f"Webhook delivery failed for {payload['batchId']} ({len(chunk)} recipients): {e}")
                result.failed += len(chunk)

    logger.info(f"Dispatched {message_type.value} in {location}: {result.sent} sent, {result.failed} failed.")
    return result


# ── Messaging service ─────────────────────────────────────────────────────────
def _sort_newest_first(messages: List[MessageRecord]) -> List[MessageRecord]:
    return sorted(messages, key=lambda m: m.sent_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)


class MessagingService:
    def __init__(
        self,
        store: DocumentStore,
        allocations: Optional[AllocationService] = None,
        webhook_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.allocations = allocations or AllocationService(store)
        self.webhook_url = webhook_url
        self.transport = transport

    async def send(self, sender: User, request: MessageRequest) -> MessageRecord:
        district = request.district.strip()
        village = request.village.strip() if request.village else None
        await self.allocations.ensure_visible(sender, district, village)

        recipients = await collect_recipients(self.store, district, village)
        area = f"{village}, {district}" if village else f"All villages, {district}"
        if not recipients:
            raise ValidationFailed(f"No mobile numbers found for {area}.")

        result = await dispatch_messages(
            recipients, request.message, request.type, area, sender.email,
            webhook_url=self.webhook_url, transport=self.transport,
        )
        record = MessageRecord(
            id=uuid.uuid4().hex,
            sent_by=sender.email,
            type=request.type,
            message=request.message,
            district=district,
            village=village,
            area=area,
            recipient_count=len(recipients),
            actual_recipients=result.sent,
            failed_recipients=result.failed,
            send_status=result.status,
            sent_at=utcnow(),
        )
        await self.store.set(message_path(record.id), to_document(record))
        logger.info(f"{sender.email} sent {request.type.value} to {result.sent}/{len(recipients)} in {area}.")
        return record

    async def _load(self, sender_email: Optional[str] = None) -> List[MessageRecord]:
        where = [("sentBy", sender_email)] if sender_email else None
        docs = await self.store.stream(MESSAGES_COLLECTION, where=where)
        return [MessageRecord(id=doc.id, **doc.data) for doc in docs]

    async def history(self, sender_email: str) -> List[MessageRecord]:
        return _sort_newest_first(await self._load(sender_email))

    async def all_messages(self) -> List[MessageRecord]:
        return _sort_newest_first(await self._load())

    async def history_for(self, viewer: User) -> List[MessageRecord]:
        """
        main_admin sees every message; anyone else sees their own and those
        sent by accounts in their tree.
        """
        if viewer.is_root:
            return await self.all_messages()
        users = await self.allocations.users.list_users()
        senders = {viewer.email} | {u.email for u in manageable_users(users, viewer)}
        return [m for m in await self.all_messages() if m.sent_by in senders]

    async def clear_history(self, actor: User, everyone: bool = False) -> int:
        """Delete the actor's own history, or every message (main_admin only)."""
        if everyone and not actor.is_root:
            raise PermissionDenied(f"{actor.email} cannot clear other accounts' messages.")
        docs = await self.store.stream(
            MESSAGES_COLLECTION, where=None if everyone else [("sentBy", actor.email)]
        )
        deleted = 0
        batch = self.store.batch()
        for doc in docs:
            if len(batch) >= batch.limit:
                deleted += await batch.commit()
                batch = self.store.batch()
            batch.delete(message_path(doc.id))
        deleted += await batch.commit()
        logger.info(f"{actor.email} cleared {deleted} message(s){' for every account' if everyone else ''}.")
        return deleted
