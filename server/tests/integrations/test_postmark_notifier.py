"""
Postmark notifier tests against a patched aiohttp session.
"""

from unittest.mock import AsyncMock, patch

import aiohttp
import pytest
import pytest_asyncio

from signdesk.integrations.notifications import EmailMessage, NotificationError, PostmarkNotifier


class TestPostmarkNotifier:
    @pytest_asyncio.fixture
    async def notifier(self):
        postmark = PostmarkNotifier("server-token", "noreply@signdesk.test")
        yield postmark
        await postmark.close()

    @pytest.fixture
    def message(self):
        return EmailMessage(
            to_email="bob@example.com",
            to_name="Bob Signer",
            subject="Signature requested: MSA",
            text_body="Sign here: https://sign.example.com/doc-1/1",
            tag="signer_invited",
            metadata={"signature_request_id": "req-1"},
        )

    @pytest.mark.asyncio
    async def test_send(self, notifier, message):
        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value.status = 200

            await notifier.send(message)

            args, kwargs = mock_post.call_args
            assert args == ("https://api.postmarkapp.com/email",)
            assert kwargs["json"] == {
                "From": "noreply@signdesk.test",
                "To": "Bob Signer <bob@example.com>",
                "Subject": "Signature requested: MSA",
                "TextBody": "Sign here: https://sign.example.com/doc-1/1",
                "MessageStream": "outbound",
                "Tag": "signer_invited",
                "Metadata": {"signature_request_id": "req-1"},
            }

    @pytest.mark.asyncio
    async def test_rejected_message(self, notifier, message):
        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value.status = 422
            mock_post.return_value.__aenter__.return_value.json = AsyncMock(
                return_value={"ErrorCode": 300, "Message": "Invalid 'To' address"}
            )

            with pytest.raises(NotificationError) as exc_info:
                await notifier.send(message)

            assert exc_info.value.status_code == 422
            assert exc_info.value.message == "Invalid 'To' address"

    @pytest.mark.asyncio
    async def test_unreachable_service(self, notifier, message):
        with patch("aiohttp.ClientSession.post", side_effect=aiohttp.ClientConnectionError("refused")):
            with pytest.raises(NotificationError):
                await notifier.send(message)
