from typing import NamedTuple

from loguru import logger
from video_generation_client.errors import SubmissionError


class RetryDecision(NamedTuple):
    retry: bool
    delay: float


class RetryPolicy:
    """Fixed-delay retry policy for job submission"""

    def __init__(self, max_retries: int = 3, delay: float = 2.0):
        self.max_retries = max_retries
        self.delay = delay
        self.logger = logger

    def decide(self, error: Exception, retries: int) -> RetryDecision:
        """Decides whether a failed submission is retried, given the retries already made"""
        if retries < self.max_retries:
            self.logger.warning(
                f"Retrying submission after error: {error} "
                f"(retry {retries + 1}/{self.max_retries}, waiting {self.delay:.2f}s)"
            )
            return RetryDecision(retry=True, delay=self.delay)
        return RetryDecision(retry=False, delay=0.0)

    def give_up(self, error: Exception, retries: int) -> SubmissionError:
        self.logger.error(f"Failed after {retries} retries: {error}")
        return SubmissionError(
            f"{error}\nFailed after {retries} retries.", attempts=retries + 1
        )
