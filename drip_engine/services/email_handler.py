"""Email handler — send a drip step via Resend."""

import logging

import resend

from drip_engine.config import DRIP_FROM_EMAIL, DRIP_FROM_NAME, RESEND_API_KEY
from drip_engine.errors import DispatchFailure

logger = logging.getLogger(__name__)


def render(text: str, attributes: dict) -> str:
    """Replace {placeholders} with subject attribute values."""
    replacements = {
        "{first_name}": attributes.get("name", "").split()[0] if attributes.get("name") else "",
    }
    for key, val in attributes.items():
        replacements[f"{{{key}}}"] = str(val)

    for placeholder, value in replacements.items():
        text = text.replace(placeholder, value)
    return text


class ResendEmailHandler:
    """Sends one email per step. Register with using="parameters".

    `messages` maps action ids to {"subject": ..., "html": ...}. The
    recipient comes from the subject's `email` attribute.
    """

    def __init__(self, messages: dict[str, dict], api_key: str | None = None,
                 from_email: str = DRIP_FROM_EMAIL, from_name: str = DRIP_FROM_NAME):
        self.messages = messages
        self.api_key = api_key if api_key is not None else RESEND_API_KEY
        self.sender = f"{from_name} <{from_email}>"

    def __call__(self, params) -> str:
        message = self.messages.get(params.action_id)
        if message is None:
            raise DispatchFailure(f"No email content for {params.action_id!r}")

        attributes = params.attributes
        to_email = attributes.get("email")
        if not to_email:
            raise DispatchFailure(f"{params.subject.subject_id} has no email address")
        if not self.api_key:
            raise DispatchFailure("RESEND_API_KEY not set, cannot send")

        if not resend.api_key:
            resend.api_key = self.api_key

        try:
            result = resend.Emails.send({
                "from": self.sender,
                "to": [to_email],
                "subject": render(message["subject"], attributes),
                "html": render(message["html"], attributes),
            })
        except Exception as e:
            raise DispatchFailure(f"Resend error on {params.action_id}: {e}") from e

        resend_id = result.get("id", "")
        logger.info("Sent %s to %s (resend id %s)", params.action_id, to_email, resend_id)
        return resend_id
