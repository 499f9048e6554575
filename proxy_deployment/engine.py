import logging
from typing import Callable, Optional

from proxy_deployment.chain import ChainClient, ConfirmedTransaction
from proxy_deployment.constants import (
    PROXY_ADMIN_CONTRACT_NAME,
    PROXY_CONTRACT_NAME,
    UPGRADE_METHOD_NAME,
)
from proxy_deployment.exceptions import (
    ConfirmationTimeout,
    DeploymentFailed,
    InvalidArguments,
    NotAProxy,
    SubmissionError,
    UpgradeFailed,
)
from proxy_deployment.records import (
    ContractFactory,
    DeploymentRequest,
    DeploymentResult,
    UpgradeRequest,
    UpgradeResult,
)
from proxy_deployment.resolver import AddressResolver

logger = logging.getLogger(__name__)

ConfirmedCallback = Optional[Callable[[ConfirmedTransaction], None]]


class ProxyDeployer:
    """
    Deploys contracts behind an OpenZeppelin TransparentUpgradeableProxy and
    upgrades existing proxies through their ProxyAdmin.

    Transactions are issued one at a time; callers must not run two flows
    against the same proxy concurrently.
    """

    def __init__(self, client: ChainClient, resolver: Optional[AddressResolver] = None):
        self.client = client
        self.resolver = resolver or AddressResolver(client)

    def deploy_contract(
        self, factory: ContractFactory, confirmations: int, *args
    ) -> ConfirmedTransaction:
        """Deploys a single (non-proxied) contract and waits for its confirmations."""
        logger.info(f"\nDeploying {factory.name}...")
        pending = self.client.deploy(factory, *args)
        confirmed = self.client.await_confirmations(pending, confirmations)
        logger.info(f"(i) {factory.name} deployed at {confirmed.contract_address}")
        return confirmed

    def deploy_new(
        self, request: DeploymentRequest, on_confirmed: ConfirmedCallback = None
    ) -> DeploymentResult:
        implementation_factory = self.client.get_factory(request.contract_name)
        proxy_factory = self.client.get_factory(PROXY_CONTRACT_NAME)
        initializer = self._get_initializer(implementation_factory, request)

        try:
            implementation = self.deploy_contract(implementation_factory, request.confirmations)
            data = b""
            if initializer:
                data = self.client.encode_call(
                    implementation_factory,
                    implementation.contract_address,
                    initializer,
                    *request.constructor_args,
                )
            logger.info(
                f"\nDeploying {PROXY_CONTRACT_NAME} contract to proxy {request.contract_name}."
            )
            proxy = self.deploy_contract(
                proxy_factory,
                request.confirmations,
                implementation.contract_address,
                self.client.sender,
                data,
            )
        except (SubmissionError, ConfirmationTimeout, ConnectionError) as e:
            raise DeploymentFailed(f"Deployment of {request.contract_name} failed: {e}") from e

        if on_confirmed:
            on_confirmed(proxy)

        try:
            addresses = self.resolver.resolve(proxy.contract_address)
        except ConnectionError as e:
            raise DeploymentFailed(
                f"{request.contract_name} was deployed at {proxy.contract_address} "
                f"but its addresses could not be read: {e}"
            ) from e
        logger.info(
            f"(i) Wrapped {request.contract_name} into {PROXY_CONTRACT_NAME} "
            f"at {proxy.contract_address}"
        )
        return DeploymentResult(
            proxy_address=proxy.contract_address,
            implementation_address=addresses.implementation,
            admin_address=addresses.admin,
            transaction_hash=proxy.txn_hash,
        )

    def upgrade(
        self, request: UpgradeRequest, on_confirmed: ConfirmedCallback = None
    ) -> UpgradeResult:
        implementation_factory = self.client.get_factory(request.contract_name)
        admin_factory = self.client.get_factory(PROXY_ADMIN_CONTRACT_NAME)
        if request.call:
            self.client.validate_call(implementation_factory, request.call, request.call_args)

        try:
            previous = self.resolver.resolve(request.proxy_address)
        except NotAProxy as e:
            raise UpgradeFailed(
                f"{request.proxy_address} is not a known upgradeable proxy: {e}"
            ) from e
        except ConnectionError as e:
            raise UpgradeFailed(f"Could not read proxy {request.proxy_address}: {e}") from e

        try:
            implementation = self.deploy_contract(implementation_factory, request.confirmations)
            data = b""
            if request.call:
                data = self.client.encode_call(
                    implementation_factory,
                    implementation.contract_address,
                    request.call,
                    *request.call_args,
                )
            logger.info(
                f"\nUpgrading proxy {request.proxy_address} to {request.contract_name} "
                f"at {implementation.contract_address} via {PROXY_ADMIN_CONTRACT_NAME} "
                f"{previous.admin}"
            )
            pending = self.client.transact(
                admin_factory,
                previous.admin,
                UPGRADE_METHOD_NAME,
                request.proxy_address,
                implementation.contract_address,
                data,
            )
            # confirmations apply to the upgrade itself, not the implementation deployment
            upgrade = self.client.await_confirmations(pending, request.confirmations)
        except (SubmissionError, ConfirmationTimeout, ConnectionError) as e:
            raise UpgradeFailed(
                f"Upgrade of {request.proxy_address} to {request.contract_name} failed: {e}"
            ) from e

        if on_confirmed:
            on_confirmed(upgrade)

        try:
            current = self.resolver.resolve(request.proxy_address)
        except ConnectionError as e:
            raise UpgradeFailed(
                f"{request.proxy_address} was upgraded but its addresses could not be read: {e}"
            ) from e
        result = UpgradeResult(
            proxy_address=request.proxy_address,
            implementation_address=current.implementation,
            admin_address=current.admin,
            transaction_hash=upgrade.txn_hash,
            previous_implementation_address=previous.implementation,
            previous_admin_address=previous.admin,
        )
        if not result.implementation_changed:
            logger.warning(
                f"(!) Implementation of {request.proxy_address} is unchanged "
                f"({current.implementation})"
            )
        if result.admin_changed:
            logger.warning(
                f"(!) Admin of {request.proxy_address} changed from {previous.admin} "
                f"to {current.admin}"
            )
        return result

    def _get_initializer(
        self, factory: ContractFactory, request: DeploymentRequest
    ) -> Optional[str]:
        """Returns the initializer to encode into the proxy constructor, if any."""
        if not request.initializer:
            if request.constructor_args:
                raise InvalidArguments(
                    f"{request.contract_name} has initialization arguments but no initializer"
                )
            return None
        if not self.client.has_method(factory, request.initializer):
            if request.constructor_args:
                raise InvalidArguments(
                    f"{request.contract_name} has no '{request.initializer}' method "
                    f"to receive its initialization arguments"
                )
            # nothing to initialize: the proxy is created without a call
            logger.debug(f"{request.contract_name} has no '{request.initializer}' method")
            return None
        self.client.validate_call(factory, request.initializer, request.constructor_args)
        return request.initializer
