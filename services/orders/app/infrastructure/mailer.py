"""Transactional email dispatch through the SendGrid v3 HTTP API."""
from typing import Optional

import httpx


class DispatchError(Exception):
    """The message could not be handed to the mail provider."""


class Mailer:
    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_base: str = "https://api.sendgrid.com/v3",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.from_address = from_address
        self.client = client or httpx.Client(
            base_url=api_base,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def send(self, to_address: str, subject: str, html_body: str) -> None:
        message = {
            "personalizations": [{"to": [{"email": to_address}]}],
            "from": {"email": self.from_address},
            "subject": subject,
            "content": [{"type": "text/html", "value": html_body}],
        }
        try:
            response = self.client.post("/mail/send", json=message)
        except httpx.HTTPError as e:
            raise DispatchError(f"Mail provider unreachable: {e}") from e
        if response.status_code >= 300:
            raise DispatchError(f"Mail provider returned {response.status_code}: {response.text[:200]}")
