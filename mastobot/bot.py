"""
Main orchestrator for the Mastodon GPT bot.

This module wires all components together and manages the event loop.

Responsibilities:
    1. Validate configuration and initialize components
    2. Keep the notification stream connected
    3. Reply to mentions (one task per notification)
    4. Publish periodic free posts
    5. Shut down cleanly on SIGINT/SIGTERM

Flow:
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Streaming API pushes a mention                          │
    │  2. Resolve thread → look up previous response id           │
    │  3. Wait for a rate-limiter slot                            │
    │  4. Generate reply (retry on degraded output)               │
    │  5. Post reply → remember response id for the thread        │
    │  Meanwhile: free-post worker posts every interval           │
    └─────────────────────────────────────────────────────────────┘

Entry Point:
    python -m mastobot.bot
"""

import asyncio
import logging
import signal
from typing import Optional

import httpx

from config import settings
from config.prompts import PromptConfig, load_prompts
from mastobot import __version__
from mastobot.ai_client import AIClient
from mastobot.conversation_store import ConversationStore
from mastobot.free_post import run_free_post_worker
from mastobot.mastodon_client import MastodonClient
from mastobot.notification_stream import NotificationHandler, NotificationStream
from mastobot.rate_limiter import RateLimiter
from mastobot.reply_generator import ReplyGenerator
from mastobot.thread_context import ThreadContextResolver

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
# Suppress noisy transport logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("websockets").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

USER_AGENT = f"mastodon-gpt-bot/{__version__}"


class MastoBot:
    """
    Main orchestrator that ties all components together.

    This class handles:
    - Component initialization
    - Startup health checks
    - Stream and free-post task coordination
    - Graceful shutdown
    """

    def __init__(self) -> None:
        """Initialize the bot with empty component references."""
        self.http: Optional[httpx.AsyncClient] = None
        self.ai: Optional[AIClient] = None
        self.mastodon: Optional[MastodonClient] = None
        self.store: Optional[ConversationStore] = None
        self.rate_limiter: Optional[RateLimiter] = None
        self.prompts: Optional[PromptConfig] = None
        self.stream: Optional[NotificationStream] = None

        self._running = False
        self._stream_task: Optional[asyncio.Task] = None
        self._free_post_task: Optional[asyncio.Task] = None

    def _validate_config(self) -> None:
        """
        Validate required configuration at startup.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        required_settings = [
            ("MASTODON_BASE_URL", settings.mastodon_base_url),
            ("MASTODON_ACCESS_TOKEN", settings.mastodon_access_token),
            ("OPENAI_API_KEY", settings.openai_api_key),
            ("OPENAI_MODEL", settings.openai_model),
        ]

        missing = [name for name, value in required_settings if not value]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        if settings.mastodon_char_limit <= 0:
            raise ValueError("MASTODON_CHAR_LIMIT must be positive")
        if not settings.streaming_url.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid streaming URL: {settings.streaming_url}")

        logger.info("Configuration validation passed")

    async def initialize(self) -> bool:
        """
        Initialize all bot components.

        Returns:
            True if all components initialized successfully, False otherwise.
        """
        logger.info("Initializing components...")

        try:
            # 0. Validate configuration first (fail fast)
            self._validate_config()
            logger.info(f"Configuration: {settings.redacted()}")

            # 1. Prompts
            self.prompts = load_prompts(settings.prompts_path)

            # 2. Conversation store
            self.store = ConversationStore(settings.bot_db_path)

            # 3. Shared HTTP client
            self.http = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.http_timeout_secs),
                headers={"User-Agent": USER_AGENT},
            )

            # 4. API clients
            self.ai = AIClient(
                base_url=settings.openai_base_url,
                api_key=settings.openai_api_key,
                http_client=self.http,
            )
            self.mastodon = MastodonClient(
                base_url=settings.mastodon_base_url,
                access_token=settings.mastodon_access_token,
                http_client=self.http,
            )

            # 5. Shared rate limiter
            self.rate_limiter = RateLimiter(min_interval=settings.reply_min_interval)

            # 6. Reply pipeline
            generator = ReplyGenerator(
                ai_client=self.ai,
                prompts=self.prompts,
                model=settings.openai_reply_model,
                temperature=settings.reply_temperature,
                enable_web_search=settings.enable_web_search,
            )
            handler = NotificationHandler(
                mastodon=self.mastodon,
                resolver=ThreadContextResolver(self.mastodon),
                store=self.store,
                rate_limiter=self.rate_limiter,
                generator=generator,
                char_limit=settings.mastodon_char_limit,
            )
            self.stream = NotificationStream(
                streaming_url=settings.streaming_url,
                access_token=settings.mastodon_access_token,
                handler=handler,
                reconnect_delay=settings.stream_reconnect_delay_secs,
                open_timeout=settings.http_timeout_secs,
            )

            logger.info("All components initialized successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize components: {e}")
            return False

    async def health_check(self) -> bool:
        """
        Verify all components are healthy.

        Returns:
            True if all components pass health checks.
        """
        logger.info("Running health checks...")

        checks = {
            "AI": await self._check_ai(),
            "Database": await self._check_db(),
        }

        for name, ok in checks.items():
            status = "OK" if ok else "FAIL"
            logger.info(f"  {name}: {status}")

        if checks["Database"]:
            logger.info(f"  Stored threads: {await self.store.count()}")
        if self.rate_limiter is not None:
            logger.info(f"  Rate limiter: {await self.rate_limiter.get_status()}")

        return all(checks.values())

    async def _check_ai(self) -> bool:
        """Check AI service health."""
        try:
            return await self.ai.health_check()
        except Exception:
            return False

    async def _check_db(self) -> bool:
        """Check database connection."""
        try:
            return await self.store.health_check()
        except Exception:
            return False

    async def start(self) -> None:
        """
        Start the bot and all background tasks.

        This method:
        1. Starts the notification stream
        2. Starts the free-post worker
        3. Waits until stop() is called
        """
        logger.info("Starting bot...")
        self._running = True

        self._stream_task = asyncio.create_task(
            self.stream.run(),
            name="notification_stream"
        )
        logger.info("Notification stream started")

        self._free_post_task = asyncio.create_task(
            run_free_post_worker(self.ai, self.mastodon, self.rate_limiter, self.prompts),
            name="free_post_worker"
        )
        logger.info("Free-post worker started")

        # Keep running until stopped
        while self._running:
            await asyncio.sleep(1)

    async def stop(self, reason: str = "Manual shutdown") -> None:
        """Gracefully stop the bot and all tasks."""
        logger.info(f"Stopping bot (Reason: {reason})...")
        self._running = False

        if self.stream:
            self.stream.stop()

        for task in (self._stream_task, self._free_post_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self.http:
            await self.http.aclose()
            self.http = None

        if self.store:
            self.store.close()
            self.store = None

        logger.info("Bot stopped")


async def main() -> None:
    """
    Main entry point for the bot.

    Initializes all components and starts the main event loop.
    """
    logger.info("=" * 60)
    logger.info(f"Starting Mastodon GPT Bot v{__version__}")
    logger.info(f"Reply model: {settings.openai_reply_model}")
    logger.info(f"Web search: {'enabled' if settings.enable_web_search else 'disabled'}")
    logger.info("=" * 60)

    bot = MastoBot()

    # Initialize components
    if not await bot.initialize():
        logger.error("Failed to initialize bot - exiting")
        await bot.stop("Initialization failed")
        return

    # Run health checks
    if not await bot.health_check():
        logger.warning("Some health checks failed - continuing anyway")

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        asyncio.create_task(bot.stop("Signal received (SIGINT/SIGTERM)"))

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    # Start the bot
    try:
        await bot.start()
    except asyncio.CancelledError:
        logger.info("Bot cancelled")
    except Exception as e:
        logger.error(f"Bot error: {e}")
    finally:
        await bot.stop()

    logger.info("Bot shutdown complete")


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
