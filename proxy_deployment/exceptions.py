"""Exception classes for proxy deployments and upgrades."""


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class ContractNotFound(DeploymentError, LookupError):
    """Raised when a contract name cannot be resolved to a contract factory."""

    pass


class SubmissionError(DeploymentError):
    """Raised when a transaction is rejected before or while being mined."""

    pass


class NodeError(DeploymentError, ConnectionError):
    """Raised when the node cannot be reached or fails to answer a query."""

    pass


class ConfirmationTimeout(DeploymentError, TimeoutError):
    """
    Raised when the requested confirmations were not observed in time.
    The transaction may still be mined later.
    """

    pass


class NotAProxy(DeploymentError, ValueError):
    """Raised when an EIP-1967 storage slot does not hold a well-formed address."""

    pass


class InvalidArguments(DeploymentError, ValueError):
    """Raised when call arguments do not match any ABI of the named method."""

    pass


class InvalidConfiguration(DeploymentError, ValueError):
    """Raised when a params file or its overrides are malformed."""

    pass


class DeploymentFailed(DeploymentError):
    """Raised when a proxy deployment could not be submitted or confirmed."""

    pass


class UpgradeFailed(DeploymentError):
    """Raised when a proxy upgrade could not be submitted or confirmed."""

    pass


class DeploymentAborted(DeploymentError):
    """Raised when the operator declines to continue."""

    pass


class VerificationFailure(DeploymentError):
    """Raised by explorers when source verification does not succeed."""

    pass
