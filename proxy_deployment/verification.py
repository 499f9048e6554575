import logging
import typing
from abc import ABC, abstractmethod
from typing import Optional

from eth_typing import ChecksumAddress
from tenacity import RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from proxy_deployment.constants import (
    ALREADY_VERIFIED_MARKERS,
    DEFAULT_MAX_VERIFICATION_BACKOFF,
    DEFAULT_VERIFICATION_ATTEMPTS,
    DEFAULT_VERIFICATION_BACKOFF,
)
from proxy_deployment.records import VerificationOutcome, VerificationStatus

logger = logging.getLogger(__name__)


class Explorer(ABC):
    """A block explorer that accepts source verification requests."""

    name = "explorer"

    @abstractmethod
    def publish(self, address: ChecksumAddress) -> None:
        """Submits the source of the contract at `address`; raises on failure."""
        raise NotImplementedError


class RetryPolicy(typing.NamedTuple):
    max_attempts: int = DEFAULT_VERIFICATION_ATTEMPTS
    backoff: float = DEFAULT_VERIFICATION_BACKOFF
    max_backoff: float = DEFAULT_MAX_VERIFICATION_BACKOFF


def _is_already_verified(error: BaseException) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in ALREADY_VERIFIED_MARKERS)


class Verifier:
    """
    Best-effort source verification. `verify` reports what happened in a
    VerificationOutcome and never raises, so a deployment or upgrade is
    complete whatever the explorer says.
    """

    def __init__(
        self,
        explorer: Optional[Explorer],
        enabled: bool = True,
        policy: Optional[RetryPolicy] = None,
    ):
        self.explorer = explorer
        self.enabled = enabled
        self.policy = policy or RetryPolicy()

    def verify(self, address: ChecksumAddress) -> VerificationOutcome:
        if not self.enabled:
            return VerificationOutcome(address, VerificationStatus.SKIPPED, "verification disabled")
        if self.explorer is None:
            return VerificationOutcome(
                address, VerificationStatus.SKIPPED, "no explorer available for this network"
            )

        logger.info(f"(i) Verifying contract at {address} on {self.explorer.name}...")
        retryer = Retrying(
            retry=retry_if_exception(lambda e: not _is_already_verified(e)),
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(multiplier=self.policy.backoff, max=self.policy.max_backoff),
            before_sleep=self._log_retry,
        )
        try:
            retryer(self.explorer.publish, address)
        except RetryError as e:
            error = e.last_attempt.exception()
            logger.warning(f"(!) Verification of {address} failed: {error}")
            return VerificationOutcome(address, VerificationStatus.FAILED, str(error))
        except Exception as e:
            if _is_already_verified(e):
                logger.info(f"(i) {address} is already verified")
                return VerificationOutcome(address, VerificationStatus.SKIPPED, str(e))
            logger.warning(f"(!) Verification of {address} failed: {e}")
            return VerificationOutcome(address, VerificationStatus.FAILED, str(e))

        logger.info(f"(i) Verified {address}")
        return VerificationOutcome(address, VerificationStatus.VERIFIED)

    @staticmethod
    def _log_retry(retry_state) -> None:
        logger.warning(
            f"(!) Verification attempt {retry_state.attempt_number} failed: "
            f"{retry_state.outcome.exception()}; retrying"
        )
