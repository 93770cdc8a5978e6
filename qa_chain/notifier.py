"""Fire-and-forget transcript copies posted to an external service."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import requests

from .config import NotifierConfig
from .errors import NotificationFailure

logger = logging.getLogger(__name__)


class TranscriptNotifier:
    """Posts each user and bot message of a session to a transcript endpoint."""

    def __init__(
        self,
        config: Optional[NotifierConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.config = config or NotifierConfig()
        self.session = session or requests.Session()
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="transcript")

    @property
    def enabled(self) -> bool:
        return bool(self.config.endpoint)

    def notify(self, session_id: str, message: str, is_bot: bool) -> None:
        """Post one message synchronously; raises :class:`NotificationFailure`."""
        payload = {
            "userId": self.config.user_id,
            "sessionId": session_id,
            "message": message,
            "isBot": is_bot,
        }
        try:
            response = self.session.post(self.config.endpoint, json=payload, timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationFailure(f"Transcript post failed for session {session_id}: {exc}") from exc
        logger.debug("Posted %s message for session %s", "bot" if is_bot else "user", session_id)

    def notify_async(self, session_id: str, message: str, is_bot: bool) -> Optional[Future]:
        """Schedule :meth:`notify` in the background; failures are only logged."""
        if not self.enabled:
            return None
        future = self._executor.submit(self.notify, session_id, message, is_bot)
        future.add_done_callback(self._log_failure)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _log_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("Ignoring transcript notification failure: %s", exc)
