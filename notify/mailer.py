"""
notify/mailer.py -- Transactional email via the Resend HTTP API.

EmailNotifier.send_mail() is the single transport call: one JSON POST to
RESEND_API_URL with the API key as a bearer token. Every failure mode --
missing configuration, network error, non-2xx answer, unreadable body --
surfaces as EmailDeliveryError so callers handle exactly one exception type.

The three send_*_email() helpers render the account lifecycle messages from
Jinja2 templates in notify/templates/. Autoescaping is on: display names are
user-supplied and end up inside HTML.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("tenantauth.notify")

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


class EmailDeliveryError(Exception):
    """The provider did not accept the message (or was never configured)."""


def _humanize_seconds(seconds: int) -> str:
    """Render a token lifetime for email copy: 900 -> '15 minutes'."""
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, seconds // 60)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


class EmailNotifier:
    """Sends account emails through Resend.

    Usage:
        notifier = EmailNotifier.from_settings(get_settings())
        notifier.send_password_reset_email("a@acme.io", "Ada", link, 900)
    """

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: int = 10,
        app_name: str = "Tenant Auth",
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._api_url = api_url
        self._timeout = timeout
        self._app_name = app_name
        # One session per notifier for connection pooling. The provider is a
        # known API endpoint; 3 redirect hops is plenty.
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        if not api_key:
            logger.error("RESEND_API_KEY is not set. Email sending will fail.")
        elif not from_address:
            logger.error("MAIL_FROM_ADDRESS is not set. Email sending will fail unless a sender is given per message.")

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailNotifier:
        return cls(
            api_key=settings.resend_api_key,
            from_address=settings.mail_from_address,
            api_url=settings.resend_api_url,
            timeout=settings.email_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def send_mail(
        self,
        to: str | list[str],
        subject: str,
        html: str,
        text: str | None = None,
        from_address: str | None = None,
    ) -> str:
        """Send one message and return the provider's message id.

        Raises EmailDeliveryError on any failure.
        """
        if not self._api_key:
            raise EmailDeliveryError("Email service is not configured (RESEND_API_KEY missing).")
        sender = from_address or self._from_address
        if not sender:
            raise EmailDeliveryError("Email sender address is not configured (MAIL_FROM_ADDRESS missing).")

        recipients = to if isinstance(to, list) else [to]
        body: dict = {"from": sender, "to": recipients, "subject": subject, "html": html}
        if text:
            body["text"] = text

        try:
            resp = self._session.post(
                self._api_url,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as e:
            detail = _provider_message(e.response)
            logger.error("Resend rejected email to %s: %s", ", ".join(recipients), detail)
            raise EmailDeliveryError(f"Email provider rejected the message: {detail}") from e
        except (requests.RequestException, ValueError) as e:
            logger.error("Email delivery to %s failed: %s", ", ".join(recipients), e)
            raise EmailDeliveryError("Email delivery failed.") from e

        # A 2xx without a JSON object body is still accepted; the id is then empty.
        message_id = str(data.get("id", "")) if isinstance(data, dict) else ""
        logger.info("Email sent to %s (id=%s)", ", ".join(recipients), message_id)
        return message_id

    # ------------------------------------------------------------------
    # Account lifecycle messages
    # ------------------------------------------------------------------

    def send_verification_email(
        self,
        to: str,
        display_name: str,
        organization_name: str,
        link: str,
        expires_in_seconds: int,
    ) -> str:
        expires_in = _humanize_seconds(expires_in_seconds)
        html = _templates.get_template("verify_email.html").render(
            display_name=display_name,
            organization_name=organization_name,
            link=link,
            expires_in=expires_in,
            app_name=self._app_name,
        )
        text = f"Verify your email address: {link}\nThis link expires in {expires_in}."
        return self.send_mail(to, "Verify Your Email Address for Your New Organization", html, text=text)

    def send_password_reset_email(self, to: str, display_name: str, link: str, expires_in_seconds: int) -> str:
        expires_in = _humanize_seconds(expires_in_seconds)
        html = _templates.get_template("reset_password.html").render(
            display_name=display_name,
            link=link,
            expires_in=expires_in,
            app_name=self._app_name,
        )
        text = f"Reset your password: {link}\nThis link expires in {expires_in}."
        return self.send_mail(to, "Password Reset Request", html, text=text)

    def send_password_changed_email(self, to: str, display_name: str) -> str:
        html = _templates.get_template("password_changed.html").render(
            display_name=display_name,
            app_name=self._app_name,
        )
        return self.send_mail(to, "Your Password Has Been Changed", html)

    def close(self) -> None:
        self._session.close()


def _provider_message(resp: requests.Response | None) -> str:
    """Best-effort extraction of Resend's error message from a failed response."""
    if resp is None:
        return "no response"
    try:
        data = resp.json()
    except ValueError:
        return str(resp.status_code)
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(resp.status_code)
