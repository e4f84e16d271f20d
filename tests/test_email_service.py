# ---------- TESTS FOR SES EMAIL TRANSPORT ----------

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from jobpilot.utils.email_service import Attachment, SESEmailTransport, _hash_email
from jobpilot.utils.exceptions import DeliveryError

# --- MOCK DATA ---

FROM_EMAIL = "jobs@jobpilot.example.com"
RECIPIENT = "recruiting@acme.example.com"


@pytest.fixture
def mock_ses_client():
    client = MagicMock()
    client.send_raw_email.return_value = {"MessageId": "ses-123"}
    return client


# --- TESTS ---


def test_send_email_success(mock_ses_client):
    """Test that a raw email is sent with the cover letter body and attachments."""
    transport = SESEmailTransport(
        from_email=FROM_EMAIL, enabled=True, ses_client=mock_ses_client
    )

    result = transport.send(
        RECIPIENT,
        "Application for Python Developer - Ada Lovelace",
        "Dear Hiring Team,",
        [Attachment(filename="CV_Ada_Lovelace_Acme_v1.docx", data=b"docx-bytes")],
    )

    assert result.message_id == "ses-123"
    kwargs = mock_ses_client.send_raw_email.call_args[1]
    assert kwargs["Source"] == FROM_EMAIL
    assert kwargs["Destinations"] == [RECIPIENT]
    raw = kwargs["RawMessage"]["Data"]
    assert "Subject: Application for Python Developer - Ada Lovelace" in raw
    assert 'filename="CV_Ada_Lovelace_Acme_v1.docx"' in raw


def test_send_email_disabled(mock_ses_client):
    """Test that disabled delivery raises instead of silently dropping the email."""
    transport = SESEmailTransport(
        from_email=FROM_EMAIL, enabled=False, ses_client=mock_ses_client
    )

    with pytest.raises(DeliveryError):
        transport.send(RECIPIENT, "Subject", "Body")
    mock_ses_client.send_raw_email.assert_not_called()


def test_send_email_missing_sender(mock_ses_client):
    """Test that a missing SES_FROM_EMAIL is a delivery error."""
    transport = SESEmailTransport(
        from_email="", enabled=True, ses_client=mock_ses_client
    )

    with pytest.raises(DeliveryError):
        transport.send(RECIPIENT, "Subject", "Body")


def test_send_email_rejected(mock_ses_client):
    """Test that SES client errors are wrapped in DeliveryError."""
    mock_ses_client.send_raw_email.side_effect = ClientError(
        {"Error": {"Code": "MessageRejected", "Message": "Email address not verified"}},
        "SendRawEmail",
    )
    transport = SESEmailTransport(
        from_email=FROM_EMAIL, enabled=True, ses_client=mock_ses_client
    )

    with pytest.raises(DeliveryError, match="MessageRejected"):
        transport.send(RECIPIENT, "Subject", "Body")


def test_hash_email():
    """Test that logged addresses are masked."""
    hashed = _hash_email("recruiting@acme.example.com")

    assert hashed.startswith("rec***@acme.example.com (")
    assert "recruiting" not in hashed
    assert _hash_email("not-an-email") == "invalid"
