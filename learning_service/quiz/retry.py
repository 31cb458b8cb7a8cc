from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

OptionsT = TypeVar("OptionsT")


class QuizGenerationExhausted(RuntimeError):
    """Every attempt returned an empty question list."""


async def generate_with_retry(
    generate: Callable[[str, OptionsT], Awaitable[list[dict[str, Any]]]],
    text: str,
    options: OptionsT,
    *,
    max_attempts: int = 2,
    base_delay: float = 1.0,
) -> list[dict[str, Any]]:
    """Call ``generate`` up to ``max_attempts`` times, sequentially.

    Returns the first non-empty question list. Waits ``attempt * base_delay``
    seconds before the next attempt. When every attempt fails, the last
    exception is re-raised; when none raised but all came back empty,
    `QuizGenerationExhausted` is raised.
    """
    attempts = max(1, max_attempts)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        logger.info("Quiz generation attempt %d/%d", attempt, attempts)
        try:
            questions = await generate(text, options)
        except Exception as e:
            last_error = e
            logger.warning("Quiz generation attempt %d/%d failed: %s", attempt, attempts, e)
        else:
            if questions:
                return questions
            logger.warning("Quiz generation attempt %d/%d returned no questions", attempt, attempts)

        if attempt < attempts:
            await asyncio.sleep(attempt * base_delay)

    if last_error is not None:
        raise last_error
    raise QuizGenerationExhausted("Failed to generate quiz after multiple attempts")
