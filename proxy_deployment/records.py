"""Requests and results exchanged with the proxy deployment engine."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from eth_typing import ChecksumAddress

from proxy_deployment.constants import DEFAULT_CONFIRMATIONS, DEFAULT_INITIALIZER
from proxy_deployment.exceptions import InvalidArguments


def _check_confirmations(confirmations: int) -> None:
    if isinstance(confirmations, bool) or not isinstance(confirmations, int):
        raise InvalidArguments(f"confirmations must be an integer, got {confirmations!r}")
    if confirmations < 0:
        raise InvalidArguments(f"confirmations must be >= 0, got {confirmations}")


@dataclass(frozen=True)
class DeploymentRequest:
    """A request to deploy a new contract behind a transparent upgradeable proxy."""

    contract_name: str
    constructor_args: Tuple[Any, ...] = ()
    confirmations: int = DEFAULT_CONFIRMATIONS
    initializer: Optional[str] = DEFAULT_INITIALIZER

    def __post_init__(self):
        _check_confirmations(self.confirmations)
        # freeze list arguments coming from yaml or the command line
        object.__setattr__(self, "constructor_args", tuple(self.constructor_args))


@dataclass(frozen=True)
class UpgradeRequest:
    """A request to point an existing proxy at a new implementation."""

    proxy_address: ChecksumAddress
    contract_name: str
    confirmations: int = DEFAULT_CONFIRMATIONS
    call: Optional[str] = None  # optional re-initializer called during the upgrade
    call_args: Tuple[Any, ...] = ()

    def __post_init__(self):
        _check_confirmations(self.confirmations)
        object.__setattr__(self, "call_args", tuple(self.call_args))
        if self.call_args and not self.call:
            raise InvalidArguments("call_args provided without a call")


@dataclass(frozen=True)
class DeploymentResult:
    proxy_address: ChecksumAddress
    implementation_address: ChecksumAddress
    admin_address: ChecksumAddress
    transaction_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UpgradeResult(DeploymentResult):
    """
    Outcome of an upgrade. The previous addresses are kept so that callers
    can tell whether the implementation really changed and the admin did not;
    neither case is an error on its own.
    """

    previous_implementation_address: Optional[ChecksumAddress] = None
    previous_admin_address: Optional[ChecksumAddress] = None

    @property
    def implementation_changed(self) -> bool:
        return self.implementation_address != self.previous_implementation_address

    @property
    def admin_changed(self) -> bool:
        return self.admin_address != self.previous_admin_address

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["implementation_changed"] = self.implementation_changed
        data["admin_changed"] = self.admin_changed
        return data


class VerificationStatus(Enum):
    VERIFIED = "verified"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationOutcome:
    address: ChecksumAddress
    status: VerificationStatus
    detail: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "status": self.status.value, "detail": self.detail}


@dataclass(frozen=True)
class ProxyAddresses:
    """Addresses read from the EIP-1967 slots of a proxy."""

    implementation: ChecksumAddress
    admin: ChecksumAddress


@dataclass(frozen=True)
class ContractFactory:
    """A named handle to whatever the chain client uses to deploy a contract."""

    name: str
    container: Any = field(default=None, compare=False, repr=False)
