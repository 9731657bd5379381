"""
Try a sequence of option variants in order, stopping at the first success.
"""

import logging
from typing import Callable, List, Sequence, Tuple, TypeVar

# Logger Setup
logger = logging.getLogger("fallback")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

OptionT = TypeVar("OptionT")
ResultT = TypeVar("ResultT")


class FallbackExhausted(Exception):
    """Every option failed. `last_error` is the final attempt's exception."""

    def __init__(self, errors: List[Tuple[object, Exception]]):
        self.errors = errors
        self.last_error = errors[-1][1] if errors else None
        super().__init__(f"All {len(errors)} attempts failed; last error: {self.last_error}")


def try_in_order(
    options: Sequence[OptionT],
    attempt: Callable[[OptionT], ResultT],
) -> Tuple[ResultT, OptionT]:
    """
    Call attempt(option) for each option until one returns without raising.

    Args:
        options: Option variants, most preferred first
        attempt: Callable run once per option

    Returns:
        Tuple of (result, winning option)

    Raises:
        FallbackExhausted: If every option raised (or options is empty)
    """
    errors: List[Tuple[object, Exception]] = []
    for option in options:
        try:
            return attempt(option), option
        except Exception as e:
            logger.debug(f"Attempt with {option!r} failed: {e}")
            errors.append((option, e))
    raise FallbackExhausted(errors)
