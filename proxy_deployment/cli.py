import json
import logging
import sys
from pathlib import Path

import click
from ape import networks
from ape.cli import ConnectedProviderCommand, network_option
from eth_utils import is_address, to_checksum_address

from proxy_deployment.constants import EXIT_FAILURE, EXIT_SUCCESS
from proxy_deployment.engine import ProxyDeployer
from proxy_deployment.exceptions import DeploymentError, NotAProxy
from proxy_deployment.orchestrator import Orchestrator, Report
from proxy_deployment.params import DeploymentParameters
from proxy_deployment.provider import (
    ApeChainClient,
    ApeExplorer,
    check_plugins,
    is_local_network,
)
from proxy_deployment.records import VerificationStatus
from proxy_deployment.resolver import AddressResolver
from proxy_deployment.verification import Verifier

logger = logging.getLogger(__name__)


class ChecksumAddressType(click.ParamType):
    name = "checksum_address"

    def convert(self, value, param, ctx):
        if not is_address(value):
            self.fail(f"{value} is not a valid ethereum address", param, ctx)
        return to_checksum_address(value)


CHECKSUM_ADDRESS = ChecksumAddressType()

params_option = click.option(
    "--params-filepath",
    "-p",
    help="Filepath of the deployment params YAML",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    required=True,
)

contract_option = click.option(
    "--contract",
    "-c",
    "contract_name",
    help="Contract name; overrides the params file",
    type=click.STRING,
    required=False,
)

confirmations_option = click.option(
    "--confirmations",
    "-n",
    help="Number of block confirmations to wait for; overrides the params file",
    type=click.IntRange(min=0),
    required=False,
)

verify_option = click.option(
    "--verify/--no-verify",
    help="Publish the implementation source to the block explorer; overrides the params file",
    default=None,
)

autosign_option = click.option(
    "--autosign",
    help="Sign transactions without prompting",
    is_flag=True,
    default=False,
)

verbose_option = click.option("--verbose", "-v", help="Debug output", is_flag=True, default=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )


def _network_context():
    """Chain id of the connected network and whether it is a local one."""
    return networks.provider.network.chain_id, is_local_network()


def _load_params(params_filepath: Path) -> DeploymentParameters:
    chain_id, local = _network_context()
    try:
        return DeploymentParameters.from_yaml(params_filepath, chain_id=chain_id, local=local)
    except DeploymentError as e:
        raise click.BadParameter(str(e), param_hint="--params-filepath")


def _build_orchestrator(params: DeploymentParameters, verify, autosign: bool):
    verify = params.verify if verify is None else verify
    try:
        check_plugins(verify=verify)
        policy = params.confirmation_policy
    except (ImportError, ValueError) as e:
        raise click.ClickException(str(e))

    client = ApeChainClient(autosign=autosign, policy=policy)
    explorer = ApeExplorer.from_network() if verify else None
    orchestrator = Orchestrator(
        deployer=ProxyDeployer(client),
        verifier=Verifier(explorer=explorer, enabled=verify),
        autosign=autosign,
    )
    return client, orchestrator


def _report(report: Report) -> None:
    click.echo(report.to_json())
    sys.exit(report.exit_code)


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@params_option
@contract_option
@confirmations_option
@verify_option
@autosign_option
@verbose_option
def deploy(network, params_filepath, contract_name, confirmations, verify, autosign, verbose):
    """Deploy a contract behind a transparent upgradeable proxy."""
    _configure_logging(verbose)
    params = _load_params(params_filepath)
    client, orchestrator = _build_orchestrator(params, verify=verify, autosign=autosign)
    try:
        request = params.deployment_request(
            deployer_address=client.sender,
            contract_name=contract_name,
            confirmations=confirmations,
        )
    except DeploymentError as e:
        raise click.BadParameter(str(e), param_hint="--params-filepath")
    _report(orchestrator.deploy(request))


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@params_option
@click.option(
    "--proxy-address",
    help="Address of the proxy to upgrade; overrides the params file",
    type=CHECKSUM_ADDRESS,
    required=False,
)
@contract_option
@confirmations_option
@verify_option
@autosign_option
@verbose_option
def upgrade(
    network, params_filepath, proxy_address, contract_name, confirmations, verify, autosign, verbose
):
    """Upgrade an existing proxy to a new implementation."""
    _configure_logging(verbose)
    params = _load_params(params_filepath)
    client, orchestrator = _build_orchestrator(params, verify=verify, autosign=autosign)
    try:
        request = params.upgrade_request(
            deployer_address=client.sender,
            proxy_address=proxy_address,
            contract_name=contract_name,
            confirmations=confirmations,
        )
    except DeploymentError as e:
        raise click.BadParameter(str(e), param_hint="--params-filepath")
    _report(orchestrator.upgrade(request))


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@click.option(
    "--address",
    "-a",
    help="Contract address; for proxies the implementation is verified",
    type=CHECKSUM_ADDRESS,
    required=True,
)
@verbose_option
def verify(network, address, verbose):
    """Verify a deployed contract."""
    _configure_logging(verbose)
    try:
        check_plugins(verify=True)
    except (ImportError, ValueError) as e:
        raise click.ClickException(str(e))

    # storage reads only; no account is selected
    resolver = AddressResolver(ApeChainClient())
    try:
        target = resolver.resolve_implementation(address)
        logger.info(f"Proxy contract detected; verifying implementation contract at {target}")
    except NotAProxy:
        target = address

    outcome = Verifier(explorer=ApeExplorer.from_network()).verify(target)
    click.echo(json.dumps(outcome.to_dict(), indent=4))
    sys.exit(EXIT_FAILURE if outcome.status == VerificationStatus.FAILED else EXIT_SUCCESS)


@click.group()
def cli():
    """Deploy, upgrade and verify contracts behind upgradeable proxies."""


cli.add_command(deploy)
cli.add_command(upgrade)
cli.add_command(verify)
