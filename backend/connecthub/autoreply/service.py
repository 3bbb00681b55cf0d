"""Simulated replies from synthetic (demo) accounts.

When a real user writes to a synthetic account, the responder waits a random
delay, stores a canned reply from the synthetic account, and hands it to a
listener (the gateway) for delivery. Replies are cosmetic: failures are
logged and never retried.

Synthetic accounts are recognised by a reserved identity prefix
(``autoreply.synthetic_prefix``, default ``sample-``).
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Set

from connecthub.config import AutoReplySettings
from connecthub.conversations.schemas import StoredMessage, new_message
from connecthub.conversations.store import ConversationStore
from connecthub.errors import StoreUnavailable, ValidationError

from .replies import generate_reply, welcome_message

logger = logging.getLogger(__name__)

ReplyListener = Callable[[StoredMessage], Awaitable[None]]


class AutoResponder:
    """Schedules delayed replies for messages addressed to synthetic accounts."""

    def __init__(
        self,
        store: ConversationStore,
        settings: Optional[AutoReplySettings] = None,
        listener: Optional[ReplyListener] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.settings = settings or AutoReplySettings()
        self.listener = listener
        self._rng = rng or random.Random()
        self._tasks: Set[asyncio.Task] = set()

    def is_synthetic(self, identity: str) -> bool:
        return bool(identity) and identity.startswith(self.settings.synthetic_prefix)

    @property
    def pending(self) -> int:
        """Number of replies scheduled but not yet finished."""
        return len(self._tasks)

    def on_message_persisted(self, message: StoredMessage) -> Optional[asyncio.Task]:
        """Schedule a reply if ``message`` was sent to a synthetic account.

        Returns:
            The scheduled task, or None if no reply is due.
        """
        if not self.settings.enabled:
            return None
        if not self.is_synthetic(message.receiver_id) or self.is_synthetic(message.sender_id):
            return None

        delay = self._rng.uniform(self.settings.min_delay_seconds, self.settings.max_delay_seconds)
        reply = generate_reply(message.content, self._rng)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            logger.warning(f"[AutoReply] Could not schedule reply to {message.id}: {e}")
            return None
        task = loop.create_task(self._reply_later(message, reply, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"[AutoReply] Reply from {message.receiver_id} due in {delay:.1f}s")
        return task

    async def _reply_later(self, message: StoredMessage, reply: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            stored = await self.store.create(
                new_message(message.receiver_id, message.sender_id, reply)
            )
            logger.info(f"[AutoReply] {stored.sender_id} replied to {stored.receiver_id}")
            if self.listener is not None:
                await self.listener(stored)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[AutoReply] Reply to message {message.id} failed: {e}", exc_info=True)

    async def initialize_conversation(self, user_id: str, synthetic_id: str) -> Optional[StoredMessage]:
        """Open a conversation with a welcome message from a synthetic account.

        Returns:
            The stored welcome message, or None if the store was unavailable.

        Raises:
            ValidationError: If ``synthetic_id`` is not a synthetic account.
        """
        if not self.is_synthetic(synthetic_id):
            raise ValidationError(f"{synthetic_id} is not a synthetic account")
        try:
            stored = await self.store.create(
                new_message(synthetic_id, user_id, welcome_message(self._rng))
            )
        except StoreUnavailable as e:
            logger.error(f"[AutoReply] Could not initialize conversation {synthetic_id} -> {user_id}: {e}")
            return None
        if self.listener is not None:
            await self.listener(stored)
        return stored

    async def shutdown(self) -> None:
        """Cancel every pending reply and wait for the tasks to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[AutoReply] Cancelled {len(tasks)} pending reply task(s)")
