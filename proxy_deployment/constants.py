from pathlib import Path

import proxy_deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(proxy_deployment.__file__).parent
CONSTRUCTOR_PARAMS_DIR = DEPLOYMENT_DIR / "constructor_params"

#
# Contracts
#

OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"

PROXY_CONTRACT_NAME = "TransparentUpgradeableProxy"
PROXY_ADMIN_CONTRACT_NAME = "ProxyAdmin"
UPGRADE_METHOD_NAME = "upgradeAndCall"
DEFAULT_INITIALIZER = "initialize"

# EIP1967 Implementation slot - https://eips.ethereum.org/EIPS/eip-1967#logic-contract-address
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

# EIP1967 Admin slot - https://eips.ethereum.org/EIPS/eip-1967#admin-address
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

EMPTY_BYTES32 = b"\x00" * 32
ADDRESS_SIZE = 20

#
# Confirmations
#

DEFAULT_CONFIRMATIONS = 1
DEFAULT_POLL_INTERVAL = 1.0  # seconds
DEFAULT_MAX_POLL_INTERVAL = 15.0  # seconds
DEFAULT_MAX_POLL_ATTEMPTS = 120

#
# Verification
#

DEFAULT_VERIFICATION_ATTEMPTS = 3
DEFAULT_VERIFICATION_BACKOFF = 2.0  # seconds
DEFAULT_MAX_VERIFICATION_BACKOFF = 30.0  # seconds
ALREADY_VERIFIED_MARKERS = ("already verified",)

#
# Process
#

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
