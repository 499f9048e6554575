import logging
import typing
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from eth_typing import ChecksumAddress
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from proxy_deployment.constants import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_MAX_POLL_INTERVAL,
    DEFAULT_POLL_INTERVAL,
)
from proxy_deployment.exceptions import ConfirmationTimeout, SubmissionError
from proxy_deployment.records import ContractFactory

logger = logging.getLogger(__name__)


class PendingTransaction(typing.NamedTuple):
    """A submitted transaction that has not been confirmed yet."""

    txn_hash: str
    contract_name: str
    contract_address: Optional[ChecksumAddress] = None  # set for contract creations


class TransactionReceipt(typing.NamedTuple):
    txn_hash: str
    block_number: int
    status: bool = True
    contract_address: Optional[ChecksumAddress] = None


class ConfirmedTransaction(typing.NamedTuple):
    txn_hash: str
    block_number: int
    confirmations: int
    contract_address: Optional[ChecksumAddress] = None


class ConfirmationPolicy(typing.NamedTuple):
    """Bounds the polling done while waiting for confirmations."""

    interval: float = DEFAULT_POLL_INTERVAL
    max_interval: float = DEFAULT_MAX_POLL_INTERVAL
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS


class _NotYetConfirmed(Exception):
    def __init__(self, observed: int):
        super().__init__(observed)
        self.observed = observed


def _log_node_error(retry_state) -> None:
    error = retry_state.outcome.exception()
    if not isinstance(error, _NotYetConfirmed):
        logger.warning(f"(!) Node error while waiting for confirmations: {error}; retrying")


class ChainClient(ABC):
    """
    Connection to a chain node: contract factory lookup, transaction
    submission, confirmation waiting and storage reads.
    """

    def __init__(self, policy: Optional[ConfirmationPolicy] = None):
        self.policy = policy or ConfirmationPolicy()

    @property
    @abstractmethod
    def sender(self) -> ChecksumAddress:
        """Address of the account signing transactions."""
        raise NotImplementedError

    @abstractmethod
    def get_factory(self, contract_name: str) -> ContractFactory:
        """Returns the factory for a contract name or raises ContractNotFound."""
        raise NotImplementedError

    @abstractmethod
    def deploy(self, factory: ContractFactory, *args) -> PendingTransaction:
        raise NotImplementedError

    @abstractmethod
    def transact(
        self, factory: ContractFactory, address: ChecksumAddress, method_name: str, *args
    ) -> PendingTransaction:
        raise NotImplementedError

    @abstractmethod
    def has_method(self, factory: ContractFactory, method_name: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def validate_call(self, factory: ContractFactory, method_name: str, args: Sequence[Any]) -> None:
        """Raises InvalidArguments if no ABI of the method accepts the arguments."""
        raise NotImplementedError

    @abstractmethod
    def encode_call(
        self, factory: ContractFactory, address: ChecksumAddress, method_name: str, *args
    ) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def get_receipt(self, txn_hash: str) -> Optional[TransactionReceipt]:
        """
        Returns the receipt of a mined transaction, or None while it is pending.
        Node failures raise NodeError.
        """
        raise NotImplementedError

    @abstractmethod
    def get_block_number(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_storage(self, address: ChecksumAddress, slot: int) -> bytes:
        raise NotImplementedError

    def await_confirmations(
        self, pending: PendingTransaction, confirmations: int
    ) -> ConfirmedTransaction:
        """
        Blocks until the transaction has been mined and `confirmations` blocks
        (counting the one including it) have been observed. Zero confirmations
        still requires the transaction to be mined.
        """
        required = max(confirmations, 1)
        logger.info(
            f"(i) Waiting for {required} confirmation(s) of {pending.contract_name} "
            f"transaction {pending.txn_hash}"
        )
        retryer = Retrying(
            # node errors while polling are retried under the same bounds
            retry=retry_if_exception_type((_NotYetConfirmed, ConnectionError)),
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(multiplier=self.policy.interval, max=self.policy.max_interval),
            before_sleep=_log_node_error,
        )
        try:
            return retryer(self._check_confirmations, pending, required)
        except RetryError as e:
            error = e.last_attempt.exception()
            if isinstance(error, _NotYetConfirmed):
                detail = f"has {error.observed} of {required} confirmation(s)"
            else:
                detail = f"could not be confirmed: {error}"
            raise ConfirmationTimeout(
                f"Transaction {pending.txn_hash} {detail} "
                f"after {self.policy.max_attempts} attempts"
            ) from e

    def _check_confirmations(
        self, pending: PendingTransaction, required: int
    ) -> ConfirmedTransaction:
        receipt = self.get_receipt(pending.txn_hash)
        if receipt is None:
            raise _NotYetConfirmed(observed=0)
        if not receipt.status:
            raise SubmissionError(
                f"{pending.contract_name} transaction {pending.txn_hash} reverted "
                f"in block {receipt.block_number}"
            )

        observed = self.get_block_number() - receipt.block_number + 1
        if observed < required:
            logger.debug(f"{pending.txn_hash}: {observed}/{required} confirmation(s)")
            raise _NotYetConfirmed(observed=observed)

        return ConfirmedTransaction(
            txn_hash=receipt.txn_hash,
            block_number=receipt.block_number,
            confirmations=observed,
            contract_address=receipt.contract_address or pending.contract_address,
        )
