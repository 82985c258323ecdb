# core/chat_client.py
import datetime
import json
from typing import Any, Optional

import httpx

from core.config import settings, logger as core_logger
from core.models import ChatMessage, SessionUser

logger = core_logger.getChild("Chat")

GREETING = "Hi! I'm your AI assistant. How can I help you today?"
EMPTY_RESPONSE_TEXT = (
    "I'm sorry, but I didn't receive a proper response from the AI service. "
    "This might be a temporary issue with the server. Please try asking your question again."
)
UNPARSEABLE_RESPONSE_TEXT = "I received your message but had trouble processing the response. Please try again."
NO_REPLY_TEXT = (
    "I received your message, but I'm having trouble generating a response right now. "
    "Please try again or check if the AI service is properly configured."
)
CONNECTION_ERROR_TEXT = "Sorry, I'm having trouble connecting right now. Please try again later."

# Keys the webhook has been seen to answer under, in lookup order
REPLY_KEYS = ("response", "message", "text", "reply")

ANONYMOUS_ID = "anonymous"
ANONYMOUS_EMAIL = "anonymous@example.com"


def build_query_params(message: str, user: Optional[SessionUser], now: Optional[datetime.datetime] = None) -> dict:
    """Query string for the webhook. Dashes in the user id become underscores."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    user_id = (user.id if user else ANONYMOUS_ID).replace("-", "_")
    return {
        "message": message,
        "userId": user_id,
        "userEmail": (user.email if user and user.email else ANONYMOUS_EMAIL),
        "timestamp": now.isoformat(),
    }


def extract_reply(content_type: str, body: str) -> str:
    """Turns a webhook response body into the assistant's reply text, falling back gracefully."""
    if "application/json" not in (content_type or ""):
        return body if body.strip() else EMPTY_RESPONSE_TEXT

    if not body.strip():
        logger.info("Empty response received from chat webhook.")
        return EMPTY_RESPONSE_TEXT

    try:
        data: Any = json.loads(body)
    except ValueError as e:
        logger.error(f"Error parsing chat webhook response: {e}")
        return UNPARSEABLE_RESPONSE_TEXT

    if isinstance(data, str):
        return data or NO_REPLY_TEXT
    if isinstance(data, dict):
        for key in REPLY_KEYS:
            value = data.get(key)
            if value:
                return str(value)
    return NO_REPLY_TEXT


class ChatClient:
    """Calls the AI assistant webhook. One shared httpx client per instance."""

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None, http_client: httpx.AsyncClient | None = None):
        self.webhook_url = webhook_url or settings.CHAT_WEBHOOK_URL
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout or settings.CHAT_TIMEOUT)
        logger.info(f"Chat client configured for webhook: {self.webhook_url}")

    async def send_message(self, message: str, user: Optional[SessionUser] = None) -> ChatMessage:
        """Sends the user's message and returns the assistant's reply. Never raises for transport errors."""
        if not message or not message.strip():
            raise ValueError("Message must not be empty")

        params = build_query_params(message, user)
        logger.debug(f"Sending chat message for userId={params['userId']}")
        try:
            response = await self._http_client.get(
                self.webhook_url,
                params=params,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Chat webhook returned error ({e.response.status_code}): {e.response.text[:200]}")
            return ChatMessage(text=CONNECTION_ERROR_TEXT, sender="ai")
        except httpx.RequestError as e:
            logger.error(f"Could not reach chat webhook at {self.webhook_url}: {e}")
            return ChatMessage(text=CONNECTION_ERROR_TEXT, sender="ai")

        reply = extract_reply(response.headers.get("content-type", ""), response.text)
        logger.info(f"Chat reply received (Status: {response.status_code}, length={len(reply)})")
        return ChatMessage(text=reply, sender="ai")

    async def aclose(self) -> None:
        await self._http_client.aclose()
        logger.info("Chat HTTPX Client closed.")
