"""
Thread Context Resolver.

Given the status a mention arrived on, fetch its ancestor chain and derive:

    thread_key: id of the oldest reachable ancestor (or the status itself),
                stable across every reply in the same thread
    transcript: the last few posts as "- text" bullets, oldest first

Fetch failures are never fatal: the mention is then treated as a fresh,
context-free conversation keyed on its own status id.
"""

import logging
from typing import Optional, Sequence

from mastobot.mastodon_client import MastodonClient
from mastobot.models import ResolvedThread, Status, StatusContext, ThreadContext
from mastobot.text_utils import strip_html

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_ANCESTORS = 10


def derive_thread_key(context: ThreadContext) -> str:
    """The first ancestor's id, or the current status id for a thread root."""
    if context.ancestors:
        return context.ancestors[0].id
    return context.current.id


def format_transcript(
    ancestors: Sequence[Status],
    current: Status,
    max_back: int = MAX_TRANSCRIPT_ANCESTORS,
) -> Optional[str]:
    """
    Flatten a thread into one bullet per post.

    Only the newest ``max_back`` ancestors are kept; posts that are empty
    after HTML stripping are skipped.

    Returns:
        The transcript, or None if nothing survived stripping.
    """
    window = list(ancestors)[-max_back:] if max_back > 0 else []
    lines = []
    for status in [*window, current]:
        text = strip_html(status.html_content)
        if text:
            lines.append(f"- {text}")
    return "\n".join(lines) or None


class ThreadContextResolver:
    """Resolves thread key and transcript for a mentioned status."""

    def __init__(self, mastodon: MastodonClient, max_back: int = MAX_TRANSCRIPT_ANCESTORS):
        self.mastodon = mastodon
        self.max_back = max_back

    async def resolve(self, status: Status) -> ResolvedThread:
        """
        Resolve the thread a status belongs to.

        Never raises for platform or network problems; those degrade to a
        context-free thread keyed on ``status.id``.
        """
        try:
            raw: StatusContext = await self.mastodon.fetch_status_context(status.id)
        except Exception as e:
            logger.warning(f"Failed to fetch status context for {status.id}: {e}")
            return ResolvedThread(thread_key=status.id, transcript=None)

        context = ThreadContext(ancestors=list(raw.ancestors), current=status)
        thread_key = derive_thread_key(context)
        transcript = format_transcript(context.ancestors, status, self.max_back)

        logger.debug(
            f"Resolved thread {thread_key} for status {status.id} "
            f"({len(context.ancestors)} ancestor(s))"
        )
        return ResolvedThread(thread_key=thread_key, transcript=transcript)
