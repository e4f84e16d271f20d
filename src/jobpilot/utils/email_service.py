"""
Email Transport via AWS SES.

Sends an application email (cover letter as body, rendered documents as
attachments) with AWS Simple Email Service.

This transport performs a real side effect. It is only ever called by the
Submission Dispatcher, which owns the test-mode gate; nothing else in the
package sends email.

Environment Variables:
    EMAIL_ENABLED: Enable real email delivery (default: "false")
    SES_REGION: AWS region for SES (default: "eu-north-1")
    SES_FROM_EMAIL: Verified sender address

Note:
    Requires AWS SES to be configured and the execution role to have
    permissions to send emails via SES.
"""

import hashlib
from dataclasses import dataclass
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from jobpilot.config.settings import EMAIL_ENABLED, SES_FROM_EMAIL, SES_REGION
from jobpilot.utils.exceptions import DeliveryError
from jobpilot.utils.logger import get_logger
from jobpilot.utils.s3_manager import DOCX_CONTENT_TYPE

logger = get_logger(__name__)


@dataclass
class Attachment:
    filename: str
    data: bytes
    content_type: str = DOCX_CONTENT_TYPE


@dataclass
class DeliveryResult:
    message_id: str


class SESEmailTransport:
    """Email transport backed by AWS SES `send_raw_email`.

    Args:
        from_email: Verified sender address.
        region: SES region.
        enabled: Master switch for real delivery.
        ses_client: Optional boto3 SES client (created lazily otherwise).
    """

    def __init__(
        self,
        from_email: str = SES_FROM_EMAIL,
        region: str = SES_REGION,
        enabled: bool = EMAIL_ENABLED,
        ses_client: Any = None,
    ) -> None:
        self.from_email = from_email
        self.region = region
        self.enabled = enabled
        self._ses_client = ses_client

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> DeliveryResult:
        """Send one email.

        Args:
            to: Recipient address.
            subject: Subject line.
            body: Plain-text body.
            attachments: Files to attach.

        Returns:
            DeliveryResult with the SES message id.

        Raises:
            DeliveryError: If delivery is disabled, misconfigured or rejected.
        """
        if not self.enabled:
            logger.warning(
                "Email delivery is disabled",
                extra={"extra_fields": {"recipient_email_hash": _hash_email(to)}},
            )
            raise DeliveryError("Email delivery is disabled (EMAIL_ENABLED=false)")

        if not self.from_email:
            logger.error(
                "SES_FROM_EMAIL not configured",
                extra={"extra_fields": {"recipient_email_hash": _hash_email(to)}},
            )
            raise DeliveryError("SES_FROM_EMAIL not configured")

        msg = MIMEMultipart()
        msg["From"] = self.from_email
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        for attachment in attachments or []:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype, subtype)
            part.set_payload(attachment.data)
            encoders.encode_base64(part)
            part.add_header(
                "Content-Disposition",
                f'attachment; filename="{attachment.filename}"',
            )
            msg.attach(part)

        try:
            response = self._client().send_raw_email(
                Source=self.from_email,
                Destinations=[to],
                RawMessage={"Data": msg.as_string()},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to send email",
                extra={
                    "extra_fields": {
                        "recipient_email_hash": _hash_email(to),
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
                exc_info=True,
            )
            raise DeliveryError(f"SES rejected the email: {e}") from e

        message_id = response.get("MessageId", "")
        logger.info(
            "Email sent successfully",
            extra={
                "extra_fields": {
                    "recipient_email_hash": _hash_email(to),
                    "attachment_count": len(attachments or []),
                    "message_id": message_id,
                }
            },
        )
        return DeliveryResult(message_id=message_id)

    def _client(self) -> Any:
        if self._ses_client is None:
            import boto3

            self._ses_client = boto3.client("ses", region_name=self.region)
        return self._ses_client


def _hash_email(email: str) -> str:
    """Hash email address for logging (privacy protection).

    Args:
        email: Email address to hash

    Returns:
        Hashed email string (first 3 chars + hash of rest)
    """
    if not email or "@" not in email:
        return "invalid"

    local, domain = email.split("@", 1)
    visible = local[:3] if len(local) > 3 else local
    hash_part = hashlib.sha256(email.encode()).hexdigest()[:8]
    return f"{visible}***@{domain} ({hash_part})"
