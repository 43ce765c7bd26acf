"""Human-like pacing for multi-segment replies.

Delays are in milliseconds. A segment's base delay is its length divided by
the typing speed, scaled by a random factor. The first segment of a reply may
carry extra "thinking" time, unless the agent call itself already took long
enough that the user has been waiting.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from replybot.config import Settings
from replybot.logging_config import get_logger

logger = get_logger("pacing_service")


class ReplyPacer:
    def __init__(
        self,
        speed_chars_per_sec: float = 8,
        min_delay_ms: int = 800,
        max_delay_ms: int = 8000,
        random_variation: float = 0.2,
        thinking_time_min_ms: int = 1000,
        thinking_time_max_ms: int = 3000,
        reasonable_wait_ms: int = 3000,
        enable_thinking_time: bool = True,
        rng: Optional[random.Random] = None,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.speed_chars_per_sec = speed_chars_per_sec
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.random_variation = random_variation
        self.thinking_time_min_ms = thinking_time_min_ms
        self.thinking_time_max_ms = thinking_time_max_ms
        self.reasonable_wait_ms = reasonable_wait_ms
        self.enable_thinking_time = enable_thinking_time
        self._rng = rng or random.Random()
        self._sleep = sleep_func

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ReplyPacer":
        return cls(
            speed_chars_per_sec=settings.typing_speed_chars_per_sec,
            min_delay_ms=settings.typing_min_delay_ms,
            max_delay_ms=settings.typing_max_delay_ms,
            random_variation=settings.typing_random_variation,
            thinking_time_min_ms=settings.typing_thinking_time_min_ms,
            thinking_time_max_ms=settings.typing_thinking_time_max_ms,
            reasonable_wait_ms=settings.typing_reasonable_wait_ms,
            enable_thinking_time=settings.enable_typing_thinking_time,
            **kwargs,
        )

    def _jitter(self) -> float:
        return self._rng.uniform(1 - self.random_variation, 1 + self.random_variation)

    def _clamp(self, delay: float) -> int:
        return int(round(min(max(delay, self.min_delay_ms), self.max_delay_ms)))

    def calculate_delay(
        self,
        text: str,
        is_first_segment: bool = False,
        agent_process_time_ms: Optional[float] = None,
    ) -> int:
        delay = len(text) / self.speed_chars_per_sec * 1000 * self._jitter()

        if is_first_segment and self.enable_thinking_time:
            if agent_process_time_ms is not None:
                if agent_process_time_ms >= self.reasonable_wait_ms:
                    # the user already waited for the agent: send right away
                    return 0
                delay = min(delay, self.reasonable_wait_ms - agent_process_time_ms)
            else:
                delay += self._rng.uniform(self.thinking_time_min_ms, self.thinking_time_max_ms)

        return self._clamp(delay)

    def calculate_delays(self, segments: list[str], agent_process_time_ms: Optional[float] = None) -> list[int]:
        return [
            self.calculate_delay(segment, is_first_segment=index == 0, agent_process_time_ms=agent_process_time_ms)
            for index, segment in enumerate(segments)
        ]

    async def sleep(self, delay_ms: int) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)
