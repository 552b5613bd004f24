"""Notifier that keeps everything it was asked to send."""

from __future__ import annotations

import itertools
from typing import List, Optional, Sequence, Tuple

from p2ptrade.services.notifier import BaseNotifier


class RecordingNotifier(BaseNotifier):
    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.sent: List[Tuple[str, str, List[str]]] = []
        self.edited: List[Tuple[str, str, str]] = []
        self.deleted: List[Tuple[str, str]] = []

    async def send(
        self, chat_id: str, text: str, buttons: Optional[Sequence[str]] = None
    ) -> Optional[str]:
        self.sent.append((chat_id, text, list(buttons or [])))
        return str(next(self._ids))

    async def edit(self, chat_id: str, message_id: str, text: str) -> None:
        self.edited.append((chat_id, message_id, text))

    async def delete(self, chat_id: str, message_id: str) -> None:
        self.deleted.append((chat_id, message_id))

    def texts_for(self, chat_id: str) -> List[str]:
        return [text for to, text, _ in self.sent if to == chat_id]

    def buttons_for(self, chat_id: str) -> List[str]:
        return [b for to, _, buttons in self.sent if to == chat_id for b in buttons]
