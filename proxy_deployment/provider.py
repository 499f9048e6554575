"""ape-backed chain client and explorer."""

import logging
import os
from typing import Any, Dict, Optional, Sequence

from ape import chain, networks, project
from ape.api import AccountAPI
from ape.api.networks import LOCAL_NETWORK_NAME
from ape.cli.choices import select_account
from ape.contracts import ContractContainer
from ape.exceptions import ApeException, TransactionNotFoundError
from eth_abi import is_encodable
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_hex
from ethpm_types import MethodABI

from proxy_deployment.chain import (
    ChainClient,
    ConfirmationPolicy,
    PendingTransaction,
    TransactionReceipt,
)
from proxy_deployment.constants import OZ_DEPENDENCY_NAME, OZ_DEPENDENCY_VERSION
from proxy_deployment.exceptions import (
    ContractNotFound,
    InvalidArguments,
    NodeError,
    SubmissionError,
    VerificationFailure,
)
from proxy_deployment.records import ContractFactory
from proxy_deployment.verification import Explorer

logger = logging.getLogger(__name__)


def is_local_network() -> bool:
    return networks.provider.network.name == LOCAL_NETWORK_NAME


def check_etherscan_plugin() -> None:
    """
    Checks that the ape-etherscan plugin is installed and that
    the appropriate API key environment variable is set.
    """
    if is_local_network():
        # unnecessary for local deployment
        return
    try:
        from ape_etherscan.utils import API_KEY_ENV_KEY_MAP
    except ImportError:
        raise ImportError("Please install the ape-etherscan plugin to verify contracts.")
    ecosystem_name = networks.provider.network.ecosystem.name
    explorer_envvar = API_KEY_ENV_KEY_MAP.get(ecosystem_name)
    api_key = os.environ.get(explorer_envvar) if explorer_envvar else None
    if not api_key:
        raise ValueError(f"{explorer_envvar or 'Explorer API key'} is not set.")


def check_infura_plugin() -> None:
    """Checks that the ape-infura plugin is installed and configured when it is in use."""
    if is_local_network():
        return  # unnecessary for local deployment
    if networks.provider.name != "infura":
        return  # unnecessary when using a provider different than infura
    try:
        from ape_infura.provider import _ENVIRONMENT_VARIABLE_NAMES
    except ImportError:
        raise ImportError("Please install the ape-infura plugin to use this provider.")
    for envvar in _ENVIRONMENT_VARIABLE_NAMES:
        if os.environ.get(envvar):
            break
    else:
        raise ValueError(
            f"No Infura API key found in "
            f"environment variables: {', '.join(_ENVIRONMENT_VARIABLE_NAMES)}"
        )


def check_plugins(verify: bool) -> None:
    logger.info("Checking plugins...")
    if verify:
        check_etherscan_plugin()
    check_infura_plugin()


def get_contract_container(contract_name: str) -> ContractContainer:
    """Looks the contract up in the project, then in the OpenZeppelin dependency."""
    try:
        return getattr(project, contract_name)
    except AttributeError:
        pass  # not in root project; check dependencies

    try:
        dependency = project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]
        return getattr(dependency, contract_name)
    except (AttributeError, KeyError, ApeException) as e:
        raise ContractNotFound(f"No contract found with name '{contract_name}'.") from e


def _validate_method_args(
    method_abis: Sequence[MethodABI], args: Sequence[Any]
) -> Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise InvalidArguments("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for arg, abi_input in zip(args, abi.inputs):
            if not is_encodable(abi_input.canonical_type, arg):
                break
            named_args[abi_input.name] = arg
        else:
            return named_args
    raise InvalidArguments(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


def _hex(value: Any) -> str:
    return value if isinstance(value, str) else to_hex(value)


class ApeChainClient(ChainClient):
    """
    Chain client using the active ape provider and an ape account.
    """

    def __init__(
        self,
        account: Optional[AccountAPI] = None,
        autosign: bool = False,
        policy: Optional[ConfirmationPolicy] = None,
    ):
        super().__init__(policy)
        self._account = None
        self._autosign = autosign
        if account is not None:
            self._set_account(account)

    @property
    def account(self) -> AccountAPI:
        """The signing account, selected interactively on first use if none was given."""
        if self._account is None:
            self._set_account(select_account())
        return self._account

    def _set_account(self, account: AccountAPI) -> None:
        if self._autosign:
            logger.warning("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        if hasattr(account, "set_autosign"):
            account.set_autosign(self._autosign)
        self._account = account

    @property
    def sender(self) -> ChecksumAddress:
        return self.account.address

    def get_factory(self, contract_name: str) -> ContractFactory:
        container = get_contract_container(contract_name)
        return ContractFactory(name=container.contract_type.name, container=container)

    def deploy(self, factory: ContractFactory, *args) -> PendingTransaction:
        try:
            instance = self.account.deploy(factory.container, *args, required_confirmations=0)
        except ApeException as e:
            raise SubmissionError(f"Deployment of {factory.name} was rejected: {e}") from e
        return PendingTransaction(
            txn_hash=_hex(instance.receipt.txn_hash),
            contract_name=factory.name,
            contract_address=to_checksum_address(instance.address),
        )

    def _at(self, factory: ContractFactory, address: ChecksumAddress):
        try:
            return factory.container.at(address)
        except ApeException as e:
            raise SubmissionError(f"No {factory.name} contract found at {address}: {e}") from e

    def transact(
        self, factory: ContractFactory, address: ChecksumAddress, method_name: str, *args
    ) -> PendingTransaction:
        method = getattr(self._at(factory, address), method_name)
        try:
            receipt = method(*args, sender=self.account, required_confirmations=0)
        except ApeException as e:
            raise SubmissionError(
                f"{factory.name}[{address[:10]}].{method_name} was rejected: {e}"
            ) from e
        return PendingTransaction(txn_hash=_hex(receipt.txn_hash), contract_name=factory.name)

    def has_method(self, factory: ContractFactory, method_name: str) -> bool:
        methods = factory.container.contract_type.methods
        return any(abi.name == method_name for abi in methods)

    def validate_call(self, factory: ContractFactory, method_name: str, args: Sequence[Any]) -> None:
        methods = factory.container.contract_type.methods
        method_abis = [abi for abi in methods if abi.name == method_name]
        if not method_abis:
            raise InvalidArguments(f"{factory.name} has no method '{method_name}'")
        _validate_method_args(method_abis=method_abis, args=args)

    def encode_call(
        self, factory: ContractFactory, address: ChecksumAddress, method_name: str, *args
    ) -> bytes:
        method_handler = getattr(self._at(factory, address), method_name)
        try:
            return bytes(method_handler.encode_input(*args))
        except ApeException as e:
            raise InvalidArguments(f"Could not encode {factory.name}.{method_name}: {e}") from e

    def get_receipt(self, txn_hash: str) -> Optional[TransactionReceipt]:
        try:
            receipt = chain.provider.get_receipt(txn_hash)
        except TransactionNotFoundError:
            return None
        except ApeException as e:
            raise NodeError(f"Could not fetch receipt of {txn_hash}: {e}") from e
        contract_address = receipt.contract_address
        return TransactionReceipt(
            txn_hash=_hex(receipt.txn_hash),
            block_number=receipt.block_number,
            status=not receipt.failed,
            contract_address=to_checksum_address(contract_address) if contract_address else None,
        )

    def get_block_number(self) -> int:
        try:
            return chain.blocks.head.number
        except ApeException as e:
            raise NodeError(f"Could not fetch the chain head: {e}") from e

    def get_storage(self, address: ChecksumAddress, slot: int) -> bytes:
        try:
            return bytes(chain.provider.get_storage(address, slot))
        except ApeException as e:
            raise NodeError(f"Could not read storage of {address}: {e}") from e


class ApeExplorer(Explorer):
    """Publishes contract sources through the explorer plugin of the active network."""

    def __init__(self, explorer: Any):
        self._explorer = explorer
        self.name = explorer.name

    @classmethod
    def from_network(cls) -> Optional["ApeExplorer"]:
        explorer = networks.provider.network.explorer
        if explorer is None:
            return None
        return cls(explorer)

    def publish(self, address: ChecksumAddress) -> None:
        try:
            self._explorer.publish_contract(address)
        except ApeException as e:
            raise VerificationFailure(f"{self.name} rejected {address}: {e}") from e
