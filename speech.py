import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

logger = logging.getLogger(__name__)


class Speaker:
    """Fire-and-forget text-to-speech through the local pyttsx3 engine.

    Speech runs on a single worker thread so utterances never overlap and
    never block the event loop. Failures are logged, not raised.
    """

    def __init__(self, enabled: Optional[bool] = None, rate: Optional[int] = None):
        if enabled is None:
            enabled = os.getenv("SPEECH_ENABLED", "true").lower() in ("1", "true", "yes")
        self.enabled = enabled
        self.rate = rate
        self._engine = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def say(self, text: str) -> None:
        if not self.enabled or not text or not text.strip():
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tts")
        self._executor.submit(self._speak, text)

    def _speak(self, text: str) -> None:
        try:
            if self._engine is None:
                import pyttsx3

                self._engine = pyttsx3.init()
                if self.rate:
                    self._engine.setProperty("rate", self.rate)
            self._engine.say(text)
            self._engine.runAndWait()
            logger.debug("Finished speaking")
        except Exception as exc:
            logger.error("Error speaking text: %s", exc)

    def close(self, wait: bool = False) -> None:
        """Stop the worker. Pending speech is dropped unless *wait* is set."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
            self._executor = None
