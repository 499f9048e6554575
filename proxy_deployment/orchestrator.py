"""
Sequences a single deployment or upgrade: submit and confirm, resolve the
proxy addresses, verify the implementation and report.

    IDLE -> DEPLOYING | UPGRADING -> RESOLVING -> VERIFYING -> REPORTED

A failed chain operation moves straight to REPORTED with a failure report;
verification outcomes never turn a successful report into a failed one.
"""

import json
import logging
import typing
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from proxy_deployment.confirm import _confirm_deployment, _confirm_upgrade
from proxy_deployment.constants import EXIT_FAILURE, EXIT_SUCCESS
from proxy_deployment.engine import ProxyDeployer
from proxy_deployment.exceptions import DeploymentError
from proxy_deployment.records import (
    DeploymentRequest,
    DeploymentResult,
    UpgradeRequest,
    VerificationOutcome,
)
from proxy_deployment.verification import Verifier

logger = logging.getLogger(__name__)


class State(Enum):
    IDLE = "idle"
    DEPLOYING = "deploying"
    UPGRADING = "upgrading"
    RESOLVING = "resolving"
    VERIFYING = "verifying"
    REPORTED = "reported"


class Report(typing.NamedTuple):
    flow: str
    success: bool
    result: Optional[DeploymentResult] = None
    verification: Optional[VerificationOutcome] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def state(self) -> State:
        return State.REPORTED

    @property
    def exit_code(self) -> int:
        return EXIT_SUCCESS if self.success else EXIT_FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow": self.flow,
            "status": "success" if self.success else "failure",
            "result": self.result.to_dict() if self.result else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "error": self.error,
            "error_type": self.error_type,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=4)


class Orchestrator:
    """Runs one deploy or upgrade flow to a terminal report."""

    def __init__(self, deployer: ProxyDeployer, verifier: Verifier, autosign: bool = True):
        self.deployer = deployer
        self.verifier = verifier
        self.autosign = autosign
        self.history: List[State] = [State.IDLE]

    @property
    def state(self) -> State:
        return self.history[-1]

    def deploy(self, request: DeploymentRequest) -> Report:
        return self._run(
            flow="deploy",
            state=State.DEPLOYING,
            confirm=_confirm_deployment,
            operation=self.deployer.deploy_new,
            request=request,
        )

    def upgrade(self, request: UpgradeRequest) -> Report:
        return self._run(
            flow="upgrade",
            state=State.UPGRADING,
            confirm=_confirm_upgrade,
            operation=self.deployer.upgrade,
            request=request,
        )

    def _transition(self, state: State) -> None:
        if self.state == State.REPORTED:
            raise RuntimeError("Orchestrator already reported; create a new one per invocation")
        logger.debug(f"{self.state.value} -> {state.value}")
        self.history.append(state)

    def _run(self, flow: str, state: State, confirm: Callable, operation: Callable, request) -> Report:
        if self.state != State.IDLE:
            raise RuntimeError(f"Cannot start {flow} from state {self.state.value}")

        try:
            if not self.autosign:
                confirm(request)
            self._transition(state)
            result = operation(request, on_confirmed=lambda _: self._transition(State.RESOLVING))
        except DeploymentError as e:
            logger.error(f"(!) {flow.capitalize()} failed: {e}")
            return self._fail(flow, e)
        except Exception as e:
            # errors from outside the DeploymentError hierarchy still end in a report
            logger.exception(f"(!) {flow.capitalize()} failed unexpectedly: {e}")
            return self._fail(flow, e)

        self._transition(State.VERIFYING)
        verification = self.verifier.verify(result.implementation_address)
        self._transition(State.REPORTED)
        return Report(flow=flow, success=True, result=result, verification=verification)

    def _fail(self, flow: str, error: Exception) -> Report:
        self._transition(State.REPORTED)
        return Report(flow=flow, success=False, error=str(error), error_type=_error_type(error))


def _error_type(error: Exception) -> str:
    """Names the root cause, e.g. ConfirmationTimeout for a failed deployment."""
    cause = error.__cause__
    if isinstance(cause, DeploymentError):
        return _error_type(cause)
    return type(error).__name__
