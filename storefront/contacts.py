from __future__ import annotations
import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote

from .errors import GatewayError
from .gateway import Gateway, Record, utcnow
from .listing import ListSpec
from .notifications import Notifier
from .schemas import CONTACT_MESSAGES, CONTACTS, ContactIn, validate_fields

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


async def submit_contact(gateway: Gateway, data: Mapping[str, Any],
                         notifier: Optional[Notifier] = None) -> Optional[Record]:
    """Store a message from the public contact form. Returns the row or None on failure."""
    notifier = notifier or Notifier()
    form = validate_fields(ContactIn, data, CONTACT_MESSAGES)
    try:
        rows = await gateway.insert(CONTACTS, {**form.model_dump(), "timestamp": utcnow()})
    except GatewayError:
        logger.exception("Error sending message from %s", form.email)
        notifier.error("Failed to send message. Please try again.")
        return None
    notifier.success("Message sent successfully!")
    return rows[0]


def preview(message: str, length: int = PREVIEW_LENGTH) -> str:
    return message[:length] + ("..." if len(message) > length else "")


def reply_link(contact: Mapping[str, Any], store_name: str) -> str:
    subject = "Re: Your inquiry"
    body = f"Hello {contact.get('name', '')},\n\nThank you for contacting {store_name}.\n\n"
    return f"mailto:{contact['email']}?subject={quote(subject)}&body={quote(body)}"


def _render(row: Record) -> Record:
    return {**row, "preview": preview(row.get("message", ""))}


CONTACT_LIST = ListSpec(
    table=CONTACTS,
    label="contacts",
    order_by="timestamp",
    descending=True,
    search_fields=("name", "email"),
    render=_render,
)
