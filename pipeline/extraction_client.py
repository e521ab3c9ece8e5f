"""
Multi-key, rate-limited extraction client.

Each API key carries its own sliding 60 s call log. A key is used until it
reaches the per-window ceiling or the service reports a quota error, then the
client rotates to the next key. When every key is saturated it sleeps until
the earliest one frees up. Quota errors are retried for a bounded number of
full rotations; anything else falls through to the heuristic parser.
"""

import os
import time
import logging
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional, Tuple

import httpx

from core.models import JobPosting
from crawler.html_fetch import clean_to_text
from pipeline.ai_pipeline import (
    ExtractionError,
    build_prompt,
    normalize_response,
    parse_reply,
    validate_reply,
)
from pipeline.heuristics import HeuristicParser

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
SYSTEM_PROMPT = "You are a job extraction assistant. Return only valid JSON."

WINDOW_SECONDS = 60.0
# Added to computed waits so a key is certainly free when we wake up.
WINDOW_SLACK_SECONDS = 1.0

QUOTA_MARKERS = ('429', 'quota', 'too many requests', 'resource_exhausted')

# (api_key, prompt) -> reply text
LLMCall = Callable[[str, str], str]


class QuotaExceededError(ExtractionError):
    """Every key stayed rate limited through all backoff rounds."""


def is_quota_error(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in QUOTA_MARKERS)


class KeyStatus(str, Enum):
    FRESH = "fresh"
    ACTIVE = "active"
    SATURATED = "saturated"


class KeyState:
    """Call log of one API key."""

    def __init__(self, key: str, ceiling: int, window: float = WINDOW_SECONDS):
        self.key = key
        self.ceiling = ceiling
        self.window = window
        self.calls: Deque[float] = deque()
        self.last_call_time: Optional[float] = None
        self.saturated_until: Optional[float] = None

    def _prune(self, now: float):
        while self.calls and self.calls[0] <= now - self.window:
            self.calls.popleft()
        if self.saturated_until is not None and now >= self.saturated_until:
            self.saturated_until = None

    def call_count(self, now: float) -> int:
        self._prune(now)
        return len(self.calls)

    def window_start(self, now: float) -> Optional[float]:
        """Time of the oldest call still inside the window."""
        self._prune(now)
        return self.calls[0] if self.calls else None

    def status(self, now: float) -> KeyStatus:
        count = self.call_count(now)
        if self.saturated_until is not None or count >= self.ceiling:
            return KeyStatus.SATURATED
        return KeyStatus.FRESH if count == 0 else KeyStatus.ACTIVE

    def available_at(self, now: float) -> float:
        """Earliest time this key may be called again."""
        count = self.call_count(now)
        ready = now
        if count >= self.ceiling:
            ready = self.calls[count - self.ceiling] + self.window
        if self.saturated_until is not None:
            ready = max(ready, self.saturated_until)
        return ready

    def record_call(self, now: float):
        self._prune(now)
        self.calls.append(now)
        self.last_call_time = now

    def mark_saturated(self, now: float):
        """The service said this key is out of quota."""
        self.saturated_until = now + self.window


class KeyRotation:
    """Round-robin over key states. Owned by one ExtractionClient."""

    def __init__(self, keys: List[str], ceiling: int, window: float = WINDOW_SECONDS):
        self.states = [KeyState(key, ceiling, window) for key in keys]
        self.current_index = 0

    def __len__(self) -> int:
        return len(self.states)

    @property
    def current(self) -> KeyState:
        return self.states[self.current_index]

    def acquire(self, now: float) -> Optional[KeyState]:
        """First usable key starting at the current one, or None if all are saturated."""
        for offset in range(len(self.states)):
            index = (self.current_index + offset) % len(self.states)
            if self.states[index].status(now) != KeyStatus.SATURATED:
                if index != self.current_index:
                    logger.debug(f"[extraction] Rotating to key #{index + 1}")
                self.current_index = index
                return self.states[index]
        return None

    def next_available_at(self, now: float) -> float:
        return min(state.available_at(now) for state in self.states)

    def advance(self):
        self.current_index = (self.current_index + 1) % len(self.states)

    def reset(self):
        self.current_index = 0


class ExtractionClient:
    """Turns cleaned posting HTML into a JobPosting."""

    def __init__(
        self,
        api_keys: Optional[List[str]] = None,
        call_llm: Optional[LLMCall] = None,
        model: Optional[str] = None,
        calls_per_minute: int = 14,
        min_interval: float = 4.0,
        quota_backoff: float = 30.0,
        max_backoff_rounds: int = 3,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        heuristic_parser: Optional[HeuristicParser] = None,
    ):
        self.rotation = KeyRotation(list(api_keys or []), ceiling=calls_per_minute)
        self.call_llm = call_llm or self._call_openrouter
        self.model = model or os.getenv("OPENROUTER_MODEL", "google/gemini-2.5-flash")
        self.min_interval = min_interval
        self.quota_backoff = quota_backoff
        self.max_backoff_rounds = max_backoff_rounds
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self.heuristic_parser = heuristic_parser or HeuristicParser()

    @classmethod
    def from_config(cls, config, **kwargs) -> "ExtractionClient":
        return cls(
            api_keys=config.api_keys,
            model=config.model,
            calls_per_minute=config.calls_per_minute,
            min_interval=config.min_interval_seconds,
            quota_backoff=config.quota_backoff_seconds,
            max_backoff_rounds=config.max_backoff_rounds,
            timeout=config.extraction_timeout,
            **kwargs,
        )

    def analyze(self, cleaned_html: str, source_url: str) -> Optional[JobPosting]:
        """
        Extract a posting, trying each strategy in order.

        Returns:
            JobPosting from the first strategy that produced one, or None
        """
        for name, strategy in self._strategies():
            try:
                job = strategy(cleaned_html, source_url)
            except ExtractionError as e:
                logger.warning(f"[extraction] {name} failed for {source_url}: {e}")
                continue
            except Exception as e:
                logger.warning(f"[extraction] {name} error for {source_url}: {e}", exc_info=True)
                continue
            if job is not None:
                return job
            logger.warning(f"[extraction] {name} produced no usable posting for {source_url}")
        return None

    def _strategies(self) -> List[Tuple[str, Callable[[str, str], Optional[JobPosting]]]]:
        strategies = []
        if len(self.rotation):
            strategies.append(("llm", self._extract_with_llm))
        else:
            logger.info("[extraction] No API keys configured, using heuristic parser")
        strategies.append(("heuristic", self._extract_with_heuristics))
        return strategies

    def _extract_with_llm(self, cleaned_html: str, source_url: str) -> Optional[JobPosting]:
        prompt = build_prompt(clean_to_text(cleaned_html))
        reply = self.call_with_rotation(prompt)
        return normalize_response(validate_reply(parse_reply(reply)), source_url)

    def _extract_with_heuristics(self, cleaned_html: str, source_url: str) -> Optional[JobPosting]:
        return self.heuristic_parser.parse(cleaned_html, source_url)

    def call_with_rotation(self, prompt: str) -> str:
        """
        Call the service with key rotation and bounded quota retries.

        One round tries each key once; after a round in which every key hit
        its quota the client sleeps ``quota_backoff`` seconds and starts over
        from the first key, for at most ``max_backoff_rounds`` extra rounds.

        Raises:
            QuotaExceededError: quota errors persisted through every round
            Exception: any non-quota error from the call, unchanged
        """
        for round_no in range(self.max_backoff_rounds + 1):
            for _ in range(len(self.rotation)):
                state = self._acquire_key()
                self._respect_min_interval(state)
                state.record_call(self.clock())
                try:
                    return self.call_llm(state.key, prompt)
                except Exception as e:
                    if not is_quota_error(e):
                        raise
                    logger.warning(f"[extraction] Key #{self.rotation.current_index + 1} rate limited: {e}")
                    state.mark_saturated(self.clock())
                    self.rotation.advance()

            if round_no < self.max_backoff_rounds:
                logger.warning(
                    f"[extraction] All {len(self.rotation)} keys rate limited, backing off "
                    f"{self.quota_backoff:.0f}s (round {round_no + 1}/{self.max_backoff_rounds})"
                )
                self.sleep(self.quota_backoff)
                self.rotation.reset()

        raise QuotaExceededError(f"Quota exhausted on all keys after {self.max_backoff_rounds} backoff rounds")

    def _acquire_key(self) -> KeyState:
        now = self.clock()
        state = self.rotation.acquire(now)
        if state is not None:
            return state

        wait = self.rotation.next_available_at(now) - now + WINDOW_SLACK_SECONDS
        logger.info(f"[extraction] All keys saturated, waiting {wait:.1f}s for a window to reset")
        self.sleep(wait)

        state = self.rotation.acquire(self.clock())
        if state is None:
            raise QuotaExceededError("No key became available after waiting for window reset")
        return state

    def _respect_min_interval(self, state: KeyState):
        if state.last_call_time is None:
            return
        elapsed = self.clock() - state.last_call_time
        if elapsed < self.min_interval:
            delay = self.min_interval - elapsed
            logger.debug(f"[extraction] Rate limiting: waiting {delay:.2f}s before next call")
            self.sleep(delay)

    def _call_openrouter(self, api_key: str, prompt: str) -> str:
        """Call OpenRouter chat completions and return the reply text."""
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.1,
            "max_tokens": 4000,
        }

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(OPENROUTER_URL, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"Unexpected extraction response shape: {e}") from e
        if not content:
            raise ExtractionError("No text content in extraction response")
        return content
