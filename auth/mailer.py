"""
auth/mailer.py -- Invitation email delivery via the Resend HTTP API.

Without RESEND_API_KEY (local development) the acceptance link is logged at
INFO instead of sent, so invitations can still be completed by hand.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import requests

logger = logging.getLogger("backoffice.mailer")

RESEND_API = "https://api.resend.com/emails"
ACCEPT_PATH = "/accept-invitation"

# max_redirects=3 replaces the requests default of 30 -- one known API endpoint.
_session = requests.Session()
_session.max_redirects = 3


class MailerError(Exception):
    """The invitation email could not be handed to the provider."""


def invitation_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}{ACCEPT_PATH}?{urlencode({'token': token})}"


class InvitationMailer:
    def __init__(self, api_key: str | None, sender: str, timeout: float = 10.0) -> None:
        self._api_key = api_key or None
        self.sender = sender
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    def send_invitation(self, email: str, token: str, base_url: str, expiration_days: int) -> None:
        """Send the acceptance link to email. Raises MailerError on any delivery failure."""
        link = invitation_link(base_url, token)
        if not self.enabled:
            logger.info("RESEND_API_KEY not set; invitation link for %s: %s", email, link)
            return

        payload = {
            "from": self.sender,
            "to": email,
            "subject": "Invitation to join the CMS backoffice",
            "text": (
                "You have been invited to join the backoffice.\n\n"
                f"Accept the invitation here: {link}\n\n"
                f"This link expires in {expiration_days} days."
            ),
        }
        try:
            resp = _session.post(
                RESEND_API,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Invitation email to %s failed: %s", email, e)
            raise MailerError("Failed to send invitation email") from e
        logger.info("Invitation email sent to %s", email)
