"""Handoff between a funded wager and the component that plays the match."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from wagerhall.announcer import ChannelRef

from .models import MatchResult

logger = logging.getLogger(__name__)


class MatchHandle:
    """Single-fire completion for one match.

    The match controller calls ``resolve`` when the match ends. Only the first
    result counts; later calls are ignored and return False.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._future: asyncio.Future[MatchResult] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, result: MatchResult) -> bool:
        if self._future.cancelled():
            logger.info(f"Match result for closed session {self.session_id} ignored")
            return False
        if self._future.done():
            logger.warning(f"Duplicate match result for session {self.session_id} ignored")
            return False
        self._future.set_result(result)
        return True

    def cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> MatchResult:
        return await asyncio.shield(self._future)


class MatchController(Protocol):
    async def start_match(
        self, channel: ChannelRef, party_a: str, party_b: str, handle: MatchHandle
    ) -> None: ...

    async def end_match(self, channel: ChannelRef, party_a: str, party_b: str) -> None: ...
