from collections import defaultdict
from typing import Any, Dict, Optional, Sequence

import pytest
from eth_utils import to_checksum_address

from proxy_deployment.chain import (
    ChainClient,
    ConfirmationPolicy,
    PendingTransaction,
    TransactionReceipt,
)
from proxy_deployment.constants import (
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
    EMPTY_BYTES32,
    PROXY_ADMIN_CONTRACT_NAME,
    PROXY_CONTRACT_NAME,
    UPGRADE_METHOD_NAME,
)
from proxy_deployment.engine import ProxyDeployer
from proxy_deployment.exceptions import (
    ContractNotFound,
    InvalidArguments,
    SubmissionError,
)
from proxy_deployment.orchestrator import Orchestrator
from proxy_deployment.records import ContractFactory
from proxy_deployment.resolver import AddressResolver
from proxy_deployment.verification import Explorer, RetryPolicy, Verifier

DEPLOYER_ADDRESS = to_checksum_address("0x7acf46627094fa89339db5b2eb862f0e8ea4d9fc")

# contract name -> {method name: number of arguments}
PROJECT_CONTRACTS = {
    "MutoPool": {"initialize": 0, "numUsers": 0},
    "MutoPoolV2": {"initialize": 0, "reinitialize": 1, "numUsers": 0},
    "MutoToken": {"initialize": 2},
    "EasyAuction": {},
}

FAST_POLICY = ConfirmationPolicy(interval=0, max_interval=0, max_attempts=10)


def address_from_int(value: int) -> str:
    return to_checksum_address(value.to_bytes(20, "big"))


def address_to_slot(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


class InMemoryChain(ChainClient):
    """
    Chain client double: contracts are plain records, the proxy and its
    ProxyAdmin update EIP-1967 slots, and a block is produced per poll.
    """

    def __init__(
        self,
        contracts: Dict[str, Dict[str, int]],
        policy: Optional[ConfirmationPolicy] = None,
        blocks_per_poll: int = 1,
        mining_delay: int = 0,
    ):
        super().__init__(policy or FAST_POLICY)
        self.contracts = {
            PROXY_CONTRACT_NAME: {},
            PROXY_ADMIN_CONTRACT_NAME: {UPGRADE_METHOD_NAME: 3, "owner": 0},
            **contracts,
        }
        self.blocks_per_poll = blocks_per_poll
        self.mining_delay = mining_delay
        self.block_number = 0
        self.code = dict()  # address -> contract name
        self.owners = dict()  # proxy admin address -> owner
        self.storage = defaultdict(dict)
        self.receipts = dict()
        self.pending = dict()  # txn hash -> polls left before mining
        self.initializations = list()  # (address, call data)
        self.rejected = set()  # contract names whose deployment is rejected
        self.reverted = set()  # method names whose transactions revert
        self.polls = 0
        self._counter = 0x1000
        self._nonce = 0

    @property
    def sender(self):
        return DEPLOYER_ADDRESS

    def _next_address(self) -> str:
        self._counter += 1
        return address_from_int(self._counter)

    def _submit(self, contract_name: str, address: Optional[str], status: bool = True):
        self._nonce += 1
        txn_hash = f"0x{self._nonce:064x}"
        receipt = TransactionReceipt(
            txn_hash=txn_hash, block_number=-1, status=status, contract_address=address
        )
        if self.mining_delay:
            self.pending[txn_hash] = [self.mining_delay, receipt]
        else:
            self._mine(receipt)
        return PendingTransaction(txn_hash=txn_hash, contract_name=contract_name, contract_address=address)

    def _mine(self, receipt: TransactionReceipt) -> None:
        self.block_number += 1
        self.receipts[receipt.txn_hash] = receipt._replace(block_number=self.block_number)

    def set_slot(self, address: str, slot: int, value: bytes) -> None:
        self.storage[address][slot] = value

    def get_factory(self, contract_name: str) -> ContractFactory:
        if contract_name not in self.contracts:
            raise ContractNotFound(f"No contract found with name '{contract_name}'.")
        return ContractFactory(name=contract_name)

    def deploy(self, factory: ContractFactory, *args) -> PendingTransaction:
        if factory.name in self.rejected:
            raise SubmissionError(f"Deployment of {factory.name} was rejected: insufficient funds")
        address = self._next_address()
        self.code[address] = factory.name
        if factory.name == PROXY_CONTRACT_NAME:
            logic, owner, data = args
            admin = self._next_address()
            self.code[admin] = PROXY_ADMIN_CONTRACT_NAME
            self.owners[admin] = owner
            self.set_slot(address, EIP1967_IMPLEMENTATION_SLOT, address_to_slot(logic))
            self.set_slot(address, EIP1967_ADMIN_SLOT, address_to_slot(admin))
            if data:
                self.initializations.append((address, data))
        return self._submit(factory.name, address)

    def transact(self, factory: ContractFactory, address, method_name: str, *args):
        if self.code.get(address) != factory.name:
            raise SubmissionError(f"No {factory.name} at {address}")
        if method_name in self.reverted:
            return self._submit(factory.name, None, status=False)
        if method_name == UPGRADE_METHOD_NAME:
            proxy, implementation, data = args
            if self.code.get(proxy) != PROXY_CONTRACT_NAME:
                raise SubmissionError(f"{proxy} is not a proxy")
            self.set_slot(proxy, EIP1967_IMPLEMENTATION_SLOT, address_to_slot(implementation))
            if data:
                self.initializations.append((proxy, data))
        return self._submit(factory.name, None)

    def has_method(self, factory: ContractFactory, method_name: str) -> bool:
        return method_name in self.contracts[factory.name]

    def validate_call(self, factory: ContractFactory, method_name: str, args: Sequence[Any]) -> None:
        methods = self.contracts[factory.name]
        if method_name not in methods:
            raise InvalidArguments(f"{factory.name} has no method '{method_name}'")
        if methods[method_name] != len(args):
            raise InvalidArguments(
                f"Could not find ABI for '{method_name}' with {len(args)} arg(s) and given type(s)"
            )

    def encode_call(self, factory: ContractFactory, address, method_name: str, *args) -> bytes:
        return f"{method_name}({','.join(map(str, args))})".encode()

    def get_receipt(self, txn_hash: str) -> Optional[TransactionReceipt]:
        self.polls += 1
        if txn_hash in self.pending:
            self.pending[txn_hash][0] -= 1
            polls_left, receipt = self.pending[txn_hash]
            if polls_left > 0:
                return None
            del self.pending[txn_hash]
            self._mine(receipt)
        return self.receipts.get(txn_hash)

    def get_block_number(self) -> int:
        self.block_number += self.blocks_per_poll
        return self.block_number

    def get_storage(self, address, slot: int) -> bytes:
        return self.storage[address].get(slot, EMPTY_BYTES32)


class RecordingExplorer(Explorer):
    """Explorer double raising the queued errors before succeeding."""

    name = "testscan"

    def __init__(self, errors: Sequence[Exception] = ()):
        self.errors = list(errors)
        self.published = list()

    def publish(self, address) -> None:
        self.published.append(address)
        if self.errors:
            raise self.errors.pop(0)


@pytest.fixture
def make_chain():
    def _make_chain(**kwargs):
        return InMemoryChain(contracts=PROJECT_CONTRACTS, **kwargs)

    return _make_chain


@pytest.fixture
def chain(make_chain):
    return make_chain()


@pytest.fixture
def resolver(chain):
    return AddressResolver(chain)


@pytest.fixture
def deployer(chain, resolver):
    return ProxyDeployer(chain, resolver)


@pytest.fixture
def explorer():
    return RecordingExplorer()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, backoff=0, max_backoff=0)


@pytest.fixture
def verifier(explorer, retry_policy):
    return Verifier(explorer=explorer, policy=retry_policy)


@pytest.fixture
def orchestrator(deployer, verifier):
    return Orchestrator(deployer=deployer, verifier=verifier)


@pytest.fixture
def make_explorer():
    return RecordingExplorer


@pytest.fixture
def slot_encoder():
    return address_to_slot
