from postmarker.core import PostmarkClient
import base64
import logging
from typing import Optional, List, Dict, Any

import settings
from services.service_status import ConfigurableService, ServiceConfigStatus, missing_settings

logger = logging.getLogger(__name__)


class EmailError(Exception):
    """Raised when an email cannot be handed to the provider."""
    pass


class EmailService(ConfigurableService):
    SERVICE_NAME = "Email Service (Postmark)"
    DESCRIPTION = (
        "The following features are impacted: email verification (signup), "
        "password reset email confirmation, magic link login, client portal links, invoices"
    )

    def __init__(self):
        self._client = None
        self._token = None
        self._last_connection_error: Optional[str] = None

    def _required_config(self) -> Dict[str, Any]:
        return {
            "POSTMARK_SERVER_TOKEN": settings.POSTMARK_SERVER_TOKEN,
            "EMAIL_SENDER": settings.EMAIL_SENDER,
        }

    @property
    def client(self) -> Optional[PostmarkClient]:
        token = settings.POSTMARK_SERVER_TOKEN
        if not token:
            return None
        if self._client is None or self._token != token:
            self._client = PostmarkClient(server_token=token)
            self._token = token
            logger.info("Postmark email client initialized")
        return self._client

    def is_email_enabled(self) -> bool:
        return settings.is_email_enabled()

    def is_required(self) -> bool:
        return True

    async def send_email(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        tag: Optional[str] = None,
    ) -> Optional[str]:
        """
        Send an email through Postmark and return the provider message id.

        `attachments` items carry `filename`, `content` (bytes) and `content_type`.
        Without a server token the email is only logged in development and
        rejected elsewhere.
        """
        client = self.client
        if client is None:
            if settings.ENVIRONMENT == "development":
                logger.info(f"[DEV MODE] Email logged (not sent) to {recipient}: {subject}")
                return None
            raise EmailError("Email client not initialized. Check configuration.")

        params: Dict[str, Any] = {
            "From": settings.EMAIL_SENDER,
            "To": recipient,
            "Subject": subject,
            "HtmlBody": html_body,
            "TrackOpens": True,
            "TrackLinks": "HtmlOnly",
        }
        if text_body:
            params["TextBody"] = text_body
        if tag:
            params["Tag"] = tag
        if attachments:
            params["Attachments"] = [
                {
                    "Name": a["filename"],
                    "Content": base64.b64encode(a["content"]).decode("ascii"),
                    "ContentType": a["content_type"],
                }
                for a in attachments
            ]

        logger.info(
            f"Sending email to {recipient} subject={subject!r} attachments={len(attachments or [])}"
        )
        try:
            response = client.emails.send(**params)
        except Exception as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            raise EmailError(f"Failed to send email: {e}")

        message_id = response.get("MessageID") if isinstance(response, dict) else None
        logger.info(f"Email sent to {recipient}: {message_id}")
        return message_id

    async def send_template(self, recipient: str, template: Dict[str, str], **kwargs) -> Optional[str]:
        """Send a dict produced by services.email_templates."""
        return await self.send_email(
            recipient,
            kwargs.pop("subject", None) or template["subject"],
            template["html"],
            template.get("text"),
            **kwargs,
        )

    async def check_connection(self) -> bool:
        client = self.client
        if client is None:
            self._last_connection_error = "Email client not initialized"
            return False
        try:
            client.server.get()
            return True
        except Exception as e:
            logger.error(f"Email connection test failed: {e}")
            self._last_connection_error = f"Connection error: {e}"
            return False

    async def check_configuration(self) -> ServiceConfigStatus:
        missing = missing_settings(self._required_config())
        if missing:
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                config_to_review=missing,
                error="Configuration missing",
                description=self.DESCRIPTION,
            )

        if not await self.check_connection():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=True,
                connected=False,
                config_to_review=list(self._required_config().keys()),
                error=self._last_connection_error or "Connection failed",
                description=self.DESCRIPTION,
            )

        return ServiceConfigStatus(name=self.SERVICE_NAME, configured=True, connected=True)


email_service = EmailService()
