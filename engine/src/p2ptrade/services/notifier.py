"""
Notification transport.

The engine tells users and channels what happened through a
``BaseNotifier``: send a text (optionally with command buttons), edit a
message it posted earlier, or delete one.  The chat front end supplies the
real transport; ``LoggingNotifier`` writes to the log and is the default
for paper mode.

Notifications are sent after the record is saved.  A failed notification
is logged and never undoes a committed transition.
"""

from __future__ import annotations

import itertools
import logging
from typing import List, Optional, Sequence

from ..models import Order

logger = logging.getLogger(__name__)


class BaseNotifier:
    async def send(
        self, chat_id: str, text: str, buttons: Optional[Sequence[str]] = None
    ) -> Optional[str]:  # pragma: no cover - override
        """Send ``text`` to ``chat_id`` and return the new message id."""
        raise NotImplementedError

    async def edit(self, chat_id: str, message_id: str, text: str) -> None:  # pragma: no cover - override
        raise NotImplementedError

    async def delete(self, chat_id: str, message_id: str) -> None:  # pragma: no cover - override
        raise NotImplementedError


class LoggingNotifier(BaseNotifier):
    """Write every notification to the log."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    async def send(
        self, chat_id: str, text: str, buttons: Optional[Sequence[str]] = None
    ) -> Optional[str]:
        message_id = str(next(self._ids))
        logger.info("-> %s [%s]: %s %s", chat_id, message_id, text, list(buttons or []))
        return message_id

    async def edit(self, chat_id: str, message_id: str, text: str) -> None:
        logger.info("~> %s [%s]: %s", chat_id, message_id, text)

    async def delete(self, chat_id: str, message_id: str) -> None:
        logger.info("x> %s [%s]", chat_id, message_id)


async def notify(
    notifier: BaseNotifier,
    chat_id: Optional[str],
    text: str,
    buttons: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Send a notification, logging instead of raising on failure."""
    if chat_id is None:
        return None
    try:
        return await notifier.send(chat_id, text, buttons)
    except Exception as exc:
        logger.warning("Failed to notify %s: %s", chat_id, exc)
        return None


async def delete_postings(notifier: BaseNotifier, order: Order) -> List[str]:
    """Delete every public message about ``order``; return the ids removed."""
    removed = []
    for posting in order.postings:
        try:
            await notifier.delete(posting.chat_id, posting.message_id)
            removed.append(posting.message_id)
        except Exception as exc:
            logger.warning(
                "Failed to delete posting %s/%s of order %s: %s",
                posting.chat_id,
                posting.message_id,
                order.id,
                exc,
            )
    return removed


async def edit_postings(notifier: BaseNotifier, order: Order, text: str) -> None:
    """Replace the text of every public message about ``order``."""
    for posting in order.postings:
        try:
            await notifier.edit(posting.chat_id, posting.message_id, text)
        except Exception as exc:
            logger.warning(
                "Failed to edit posting %s/%s of order %s: %s",
                posting.chat_id,
                posting.message_id,
                order.id,
                exc,
            )
