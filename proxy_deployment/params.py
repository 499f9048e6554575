import typing
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from eth_typing import ChecksumAddress
from eth_utils import is_address, to_checksum_address

from proxy_deployment.chain import ConfirmationPolicy
from proxy_deployment.constants import DEFAULT_CONFIRMATIONS, DEFAULT_INITIALIZER
from proxy_deployment.exceptions import InvalidConfiguration
from proxy_deployment.records import DeploymentRequest, UpgradeRequest

DEPLOY_SECTION_KEY = "deploy"
UPGRADE_SECTION_KEY = "upgrade"


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


class VariableContext:
    def __init__(self, deployer_address: Optional[ChecksumAddress], constants: Dict[str, Any] = None):
        self.deployer_address = deployer_address
        self.constants = constants or dict()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    def __init__(self, context: VariableContext):
        if context.deployer_address is None:
            raise InvalidConfiguration("'$deployer' used but no deployer account is available.")
        self.address = context.deployer_address

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self) -> Any:
        return self.address


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise InvalidConfiguration(f"Constant '{constant_name}' not found in params file.")

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a params file constant."""
        return value.isupper()

    def resolve(self) -> Any:
        return self.constant_value


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount(context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    raise InvalidConfiguration(
        f"Unknown variable '${variable}'; expected '$deployer' or an upper-case constant."
    )


def _resolve_value(value: Any, context: VariableContext) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_value(v, context) for v in value]

    if Variable.is_variable(value):
        return _variable_from_value(value, context).resolve()

    return value  # literally a value


def _resolve_values(values: List[Any], context: VariableContext) -> typing.Tuple[Any, ...]:
    if values is None:
        return tuple()
    if not isinstance(values, list):
        raise InvalidConfiguration(f"Expected a list of arguments, got {values!r}.")
    return tuple(_resolve_value(value, context) for value in values)


def _get_confirmations(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidConfiguration(f"confirmations must be a non-negative integer, got {value!r}.")
    return value


def _get_chain_id(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidConfiguration(f"chain_id must be an integer, got {value!r}.")
    try:
        return int(str(value))
    except ValueError:
        raise InvalidConfiguration(f"chain_id must be an integer, got {value!r}.")


def _get_confirmation_policy(polling: Any) -> ConfirmationPolicy:
    if polling is None:
        return ConfirmationPolicy()
    if not isinstance(polling, dict):
        raise InvalidConfiguration(f"polling must be a mapping, got {polling!r}.")

    unknown = set(polling) - set(ConfirmationPolicy._fields)
    if unknown:
        raise InvalidConfiguration(f"Unknown polling options: {', '.join(sorted(unknown))}.")
    for key, value in polling.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise InvalidConfiguration(
                f"polling.{key} must be a non-negative number, got {value!r}."
            )
    max_attempts = polling.get("max_attempts", 1)
    if not isinstance(max_attempts, int) or max_attempts < 1:
        raise InvalidConfiguration(
            f"polling.max_attempts must be a positive integer, got {max_attempts!r}."
        )
    return ConfirmationPolicy(**polling)


def validate_config(config: Dict, chain_id: Optional[int] = None, local: bool = False) -> None:
    """
    Checks the params file structure and that it targets the connected chain.
    Chain id mismatches are tolerated on local networks.
    """
    if not isinstance(config, dict):
        raise InvalidConfiguration("Params file is empty or malformed.")

    deployment = config.get("deployment")
    if not deployment:
        raise InvalidConfiguration("deployment is not set in params file.")
    if not isinstance(deployment, dict):
        raise InvalidConfiguration("deployment must be a mapping.")

    config_chain_id = deployment.get("chain_id")
    if not config_chain_id:
        raise InvalidConfiguration("chain_id is not set in params file.")
    config_chain_id = _get_chain_id(config_chain_id)

    _get_confirmations(deployment.get("confirmations", DEFAULT_CONFIRMATIONS))
    _get_confirmation_policy(config.get("polling"))

    if DEPLOY_SECTION_KEY not in config and UPGRADE_SECTION_KEY not in config:
        raise InvalidConfiguration(
            f"Params file needs a '{DEPLOY_SECTION_KEY}' or '{UPGRADE_SECTION_KEY}' section."
        )

    chain_mismatch = chain_id is not None and config_chain_id != chain_id
    if chain_mismatch and not local:
        raise InvalidConfiguration(
            f"chain_id in params file ({config_chain_id}) does not match "
            f"chain_id of current network ({chain_id})."
        )


class DeploymentParameters:
    """Deployment and upgrade parameters read from a params file."""

    def __init__(self, config: Dict, path: Optional[Path] = None):
        self.config = config
        self.path = path
        self.deployment = config["deployment"]
        self.constants = config.get("constants") or dict()

    @classmethod
    def from_yaml(
        cls, filepath: Path, chain_id: Optional[int] = None, local: bool = False
    ) -> "DeploymentParameters":
        config = _load_yaml(filepath)
        validate_config(config, chain_id=chain_id, local=local)
        return cls(config=config, path=filepath)

    @property
    def chain_id(self) -> int:
        return _get_chain_id(self.deployment["chain_id"])

    @property
    def confirmations(self) -> int:
        return _get_confirmations(self.deployment.get("confirmations", DEFAULT_CONFIRMATIONS))

    @property
    def verify(self) -> bool:
        return bool(self.deployment.get("verify", False))

    @property
    def confirmation_policy(self) -> ConfirmationPolicy:
        return _get_confirmation_policy(self.config.get("polling"))

    def _section(self, key: str) -> Dict:
        section = self.config.get(key)
        if not isinstance(section, dict):
            raise InvalidConfiguration(f"'{key}' section is missing from params file.")
        return section

    def deployment_request(
        self,
        deployer_address: Optional[ChecksumAddress] = None,
        contract_name: Optional[str] = None,
        confirmations: Optional[int] = None,
    ) -> DeploymentRequest:
        """Builds the deployment request, applying command line overrides."""
        section = self._section(DEPLOY_SECTION_KEY)
        contract_name = contract_name or section.get("contract")
        if not contract_name:
            raise InvalidConfiguration("No contract to deploy.")

        context = VariableContext(deployer_address=deployer_address, constants=self.constants)
        return DeploymentRequest(
            contract_name=contract_name,
            constructor_args=_resolve_values(section.get("args"), context),
            confirmations=self.confirmations if confirmations is None else confirmations,
            initializer=section.get("initializer", DEFAULT_INITIALIZER),
        )

    def upgrade_request(
        self,
        deployer_address: Optional[ChecksumAddress] = None,
        proxy_address: Optional[ChecksumAddress] = None,
        contract_name: Optional[str] = None,
        confirmations: Optional[int] = None,
    ) -> UpgradeRequest:
        """Builds the upgrade request, applying command line overrides."""
        section = self._section(UPGRADE_SECTION_KEY)
        context = VariableContext(deployer_address=deployer_address, constants=self.constants)

        proxy_address = proxy_address or _resolve_value(section.get("proxy"), context)
        if not proxy_address or not is_address(proxy_address):
            raise InvalidConfiguration(f"Invalid or missing proxy address: {proxy_address!r}.")

        contract_name = contract_name or section.get("contract")
        if not contract_name:
            raise InvalidConfiguration("No contract to upgrade to.")

        return UpgradeRequest(
            proxy_address=to_checksum_address(proxy_address),
            contract_name=contract_name,
            confirmations=self.confirmations if confirmations is None else confirmations,
            call=section.get("call"),
            call_args=_resolve_values(section.get("args"), context),
        )
