"""
Notification Stream - websocket ingest, reconnect loop and per-mention handler.

Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                   NOTIFICATION STREAM                       │
    ├─────────────────────────────────────────────────────────────┤
    │  Loop (while running):                                      │
    │  1. Connect to wss://<host>/api/v1/streaming                │
    │  2. For each text frame:                                    │
    │     a. Decode envelope → notification                       │
    │     b. Spawn a handler task (fire-and-forget)               │
    │  3. On close/error: sleep a fixed delay, reconnect          │
    ├─────────────────────────────────────────────────────────────┤
    │                   NOTIFICATION HANDLER                      │
    ├─────────────────────────────────────────────────────────────┤
    │  mention → strip HTML → resolve thread → look up response   │
    │  id → rate-limit → generate → fit → post → remember id      │
    └─────────────────────────────────────────────────────────────┘

Handler tasks run concurrently and may finish out of order. A dropped
connection never re-delivers frames that were already dispatched.
"""

import asyncio
import json
import logging
from typing import Optional, Set
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import WebSocketException

from mastobot.conversation_store import ConversationStore
from mastobot.mastodon_client import MastodonClient
from mastobot.models import EventDecodeError, Notification, StreamEvent
from mastobot.rate_limiter import RateLimiter
from mastobot.reply_generator import ReplyGenerator
from mastobot.text_utils import fit_for_mastodon_plain, strip_html
from mastobot.thread_context import ThreadContextResolver

logger = logging.getLogger(__name__)

STREAM_NAME = "user:notification"
NOTIFICATION_EVENT = "notification"
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_OPEN_TIMEOUT = 30.0


# =============================================================================
# Decoding
# =============================================================================

def build_stream_url(streaming_url: str, access_token: str) -> str:
    """Add the notification subscription and token to the streaming URL."""
    parts = urlsplit(streaming_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("stream", STREAM_NAME))
    query.append(("access_token", access_token))
    return urlunsplit(parts._replace(query=urlencode(query)))


def parse_stream_event(text: str) -> StreamEvent:
    """
    Decode the outer envelope of a streaming frame.

    Raises:
        EventDecodeError: Invalid JSON or no ``event`` field.
    """
    return StreamEvent.from_json(text)


def decode_notification(event: StreamEvent) -> Optional[Notification]:
    """
    Decode the notification carried by an event.

    Returns:
        The notification, or None for other events and empty payloads.

    Raises:
        EventDecodeError: The payload is not a valid notification.
    """
    if event.event != NOTIFICATION_EVENT or not event.payload:
        return None

    try:
        data = json.loads(event.payload)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Failed to parse notification payload: {e}") from e
    return Notification.from_api(data)


# =============================================================================
# Handler
# =============================================================================

class NotificationHandler:
    """
    Processes one notification end to end.

    ``handle`` never raises: every failure is logged and the notification
    is dropped (or, for persistence, the reply is still posted).
    """

    def __init__(
        self,
        mastodon: MastodonClient,
        resolver: ThreadContextResolver,
        store: ConversationStore,
        rate_limiter: RateLimiter,
        generator: ReplyGenerator,
        char_limit: int = 500,
    ) -> None:
        self.mastodon = mastodon
        self.resolver = resolver
        self.store = store
        self.rate_limiter = rate_limiter
        self.generator = generator
        self.char_limit = char_limit

    async def handle(self, notification: Notification) -> None:
        try:
            await self._handle(notification)
        except Exception as e:
            logger.error(f"Unexpected error handling notification {notification.id}: {e}")

    async def _handle(self, notification: Notification) -> None:
        if not notification.is_mention:
            logger.debug(f"Ignoring {notification.type_name or 'non-mention'} notification {notification.id}")
            return

        author = notification.author
        if author.is_bot:
            logger.info(f"Skipping mention from bot account @{author.handle}")
            return

        status = notification.status
        if status is None:
            logger.warning(f"Mention {notification.id} has no status, dropping")
            return

        user_text = strip_html(status.html_content)
        logger.info(f"Mention from @{author.handle} on status {status.id}")

        thread = await self.resolver.resolve(status)

        previous_response_id = None
        try:
            previous_response_id = await self.store.get(thread.thread_key)
        except Exception as e:
            logger.error(f"Failed to load conversation for thread {thread.thread_key}: {e}")

        waited = await self.rate_limiter.wait_for_slot()
        if waited > 0:
            logger.debug(f"Rate limiter delayed reply to {status.id} by {waited:.2f}s")

        try:
            result = await self.generator.generate_reply(
                user_text,
                conversation_context=thread.transcript,
                previous_response_id=previous_response_id,
            )
        except Exception as e:
            logger.error(f"Reply generation failed for status {status.id}: {e}")
            return

        # The "@handle " prefix counts toward the server's limit
        body_limit = self.char_limit - len(f"@{author.handle} ")
        body = fit_for_mastodon_plain(result.text, body_limit)

        if body:
            try:
                await self.mastodon.post_reply(status.id, status.visibility, author.handle, body)
                logger.info(f"Replied to @{author.handle} (status {status.id})")
            except Exception as e:
                logger.error(f"Failed to post reply to status {status.id}: {e}")
        else:
            logger.warning(f"Reply to status {status.id} is empty after fitting, not posting")

        if result.response_id:
            try:
                await self.store.upsert(thread.thread_key, result.response_id)
            except Exception as e:
                logger.error(f"Failed to save conversation for thread {thread.thread_key}: {e}")


# =============================================================================
# Stream loop
# =============================================================================

class NotificationStream:
    """
    Long-lived websocket subscription with a constant reconnect delay.

    Usage:
        stream = NotificationStream(settings.streaming_url, token, handler)
        task = asyncio.create_task(stream.run())
        ...
        stream.stop()
    """

    def __init__(
        self,
        streaming_url: str,
        access_token: str,
        handler: NotificationHandler,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
    ) -> None:
        self.url = build_stream_url(streaming_url, access_token)
        self.handler = handler
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout

        self._running = False
        self._tasks: Set[asyncio.Task] = set()
        self.sessions = 0

    @property
    def in_flight(self) -> int:
        """Handler tasks that have not finished yet."""
        return len(self._tasks)

    async def run(self) -> None:
        """Connect, consume, reconnect. Returns only after ``stop()``."""
        self._running = True
        logger.info(f"Notification stream started (reconnect delay: {self.reconnect_delay}s)")

        while self._running:
            self.sessions += 1
            try:
                async with websockets.connect(self.url, open_timeout=self.open_timeout) as ws:
                    logger.info("Connected to streaming API")
                    async for raw in ws:
                        if isinstance(raw, bytes):
                            continue
                        self.dispatch(raw)
                logger.info("Streaming connection closed")
            except WebSocketException as e:
                logger.warning(f"Streaming connection failed: {e}")
            except (OSError, asyncio.TimeoutError) as e:
                logger.warning(f"Streaming connection error: {e}")
            except Exception as e:
                logger.error(f"Unexpected streaming error: {e}")

            if not self._running:
                break
            logger.info(f"Reconnecting in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

        logger.info("Notification stream stopped")

    def dispatch(self, text: str) -> Optional[asyncio.Task]:
        """
        Decode one frame and spawn a handler task for it.

        Returns:
            The spawned task, or None if the frame carried no notification.
        """
        try:
            notification = decode_notification(parse_stream_event(text))
        except EventDecodeError as e:
            logger.warning(f"Dropping undecodable stream frame: {e}")
            return None

        if notification is None:
            return None

        task = asyncio.create_task(
            self.handler.handle(notification),
            name=f"notification_{notification.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def stop(self) -> None:
        """Ask the loop to exit after the current session."""
        self._running = False
