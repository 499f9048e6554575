from typing import Any, Sequence

from eth_utils import is_same_address

from proxy_deployment.exceptions import DeploymentAborted
from proxy_deployment.records import DeploymentRequest, UpgradeRequest

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _abort() -> None:
    print("Aborting deployment!")
    raise DeploymentAborted("Aborted by operator")


def _confirm(question: str) -> None:
    answer = input(f"{question} Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _contains_zero_address(values: Sequence[Any]) -> bool:
    for value in values:
        if isinstance(value, (list, tuple)):
            if _contains_zero_address(value):
                return True
        elif isinstance(value, str) and value.startswith("0x") and len(value) == 42:
            if is_same_address(value, ZERO_ADDRESS):
                return True
    return False


def _confirm_arguments(contract_name: str, method_name: str, args: Sequence[Any]) -> None:
    if not args:
        print(f"\n(i) No {method_name} arguments for {contract_name}")
        return

    print(f"\n{method_name} arguments for {contract_name}")
    for position, value in enumerate(args):
        print(f"\t[{position}] {value}")
    if _contains_zero_address(args):
        _confirm("Zero Address detected for deployment parameter; Continue?")


def _confirm_deployment(request: DeploymentRequest) -> None:
    """Asks the user to confirm a proxied deployment."""
    _confirm_arguments(
        request.contract_name, request.initializer or "initializer", request.constructor_args
    )
    print(f"Confirmations: {request.confirmations}")
    _confirm(f"Deploy {request.contract_name} behind a proxy")


def _confirm_upgrade(request: UpgradeRequest) -> None:
    """Asks the user to confirm the upgrade of an existing proxy."""
    if request.call:
        _confirm_arguments(request.contract_name, request.call, request.call_args)
    print(f"Confirmations: {request.confirmations}")
    _confirm(f"Upgrade proxy {request.proxy_address} to {request.contract_name}")
