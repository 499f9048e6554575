from types import SimpleNamespace

import pytest
from ape.exceptions import ApeException
from ethpm_types.abi import ABIType, MethodABI

from proxy_deployment import provider
from proxy_deployment.chain import ConfirmationPolicy, PendingTransaction
from proxy_deployment.exceptions import (
    ConfirmationTimeout,
    ContractNotFound,
    InvalidArguments,
    NodeError,
    SubmissionError,
    VerificationFailure,
)
from proxy_deployment.provider import (
    ApeChainClient,
    ApeExplorer,
    _validate_method_args,
    get_contract_container,
)
from proxy_deployment.records import ContractFactory

from tests.conftest import DEPLOYER_ADDRESS, address_from_int

TOKEN = address_from_int(0xA1)
CONTRACT = address_from_int(0xB2)
SLOT = b"\x00" * 12 + bytes.fromhex(TOKEN[2:])


def method_abi(name, *inputs):
    return MethodABI(
        name=name,
        inputs=[ABIType(name=arg_name, type=arg_type) for arg_name, arg_type in inputs],
    )


INITIALIZE_ADDRESS = method_abi("initialize", ("token", "address"))
INITIALIZE_AMOUNT = method_abi("initialize", ("amount", "uint256"))
INITIALIZE_BOTH = method_abi("initialize", ("token", "address"), ("amount", "uint256"))


class StubAccount:
    def __init__(self, error=None):
        self.address = DEPLOYER_ADDRESS
        self.autosign = None
        self.error = error

    def set_autosign(self, enabled):
        self.autosign = enabled

    def deploy(self, container, *args, **kwargs):
        if self.error:
            raise self.error
        return SimpleNamespace(
            address=CONTRACT.lower(), receipt=SimpleNamespace(txn_hash="0x" + "ab" * 32)
        )


class StubContainer:
    def __init__(self, methods=(), at_error=None, encode_error=None):
        self.contract_type = SimpleNamespace(name="MutoPool", methods=list(methods))
        self.at_error = at_error
        self.encode_error = encode_error

    def at(self, address):
        if self.at_error:
            raise self.at_error
        encode_error = self.encode_error

        def encode_input(*args):
            if encode_error:
                raise encode_error
            return b"\x81\x29\xfc\x1c"

        return SimpleNamespace(initialize=SimpleNamespace(encode_input=encode_input))


class StubProvider:
    """Node that fails `failures` times before answering."""

    def __init__(self, failures=0, head=10):
        self.failures = failures
        self.head = head
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ApeException("connection refused")

    def get_receipt(self, txn_hash):
        self._maybe_fail()
        return SimpleNamespace(
            txn_hash=txn_hash, block_number=self.head, failed=False, contract_address=None
        )

    def get_storage(self, address, slot):
        self._maybe_fail()
        return SLOT


class StubBlocks:
    def __init__(self, node):
        self.node = node

    @property
    def head(self):
        self.node._maybe_fail()
        return SimpleNamespace(number=self.node.head)


@pytest.fixture
def stub_chain(monkeypatch):
    def _stub_chain(**kwargs):
        node = StubProvider(**kwargs)
        monkeypatch.setattr(provider, "chain", SimpleNamespace(provider=node, blocks=StubBlocks(node)))
        return node

    return _stub_chain


@pytest.fixture
def client():
    policy = ConfirmationPolicy(interval=0, max_interval=0, max_attempts=5)
    return ApeChainClient(account=StubAccount(), policy=policy)


def test_validate_method_args_matches_types():
    named_args = _validate_method_args([INITIALIZE_BOTH], [TOKEN, 10])
    assert named_args == {"token": TOKEN, "amount": 10}


def test_validate_method_args_selects_overload():
    overloads = [INITIALIZE_ADDRESS, INITIALIZE_AMOUNT]
    assert _validate_method_args(overloads, [5]) == {"amount": 5}
    assert _validate_method_args(overloads, [TOKEN]) == {"token": TOKEN}


@pytest.mark.parametrize(
    "method_abis, args",
    [
        ([INITIALIZE_ADDRESS], ["not an address"]),
        ([INITIALIZE_AMOUNT], [-1]),
        ([INITIALIZE_BOTH], [TOKEN]),
        ([], []),
    ],
)
def test_validate_method_args_rejects(method_abis, args):
    with pytest.raises(InvalidArguments):
        _validate_method_args(method_abis, args)


def test_contract_from_project(monkeypatch):
    container = StubContainer()
    monkeypatch.setattr(provider, "project", SimpleNamespace(MutoPool=container, dependencies={}))
    assert get_contract_container("MutoPool") is container


def test_contract_from_openzeppelin_dependency(monkeypatch):
    proxy_admin = StubContainer()
    dependencies = {"openzeppelin": {"5.0.0": SimpleNamespace(ProxyAdmin=proxy_admin)}}
    monkeypatch.setattr(provider, "project", SimpleNamespace(dependencies=dependencies))
    assert get_contract_container("ProxyAdmin") is proxy_admin


@pytest.mark.parametrize(
    "dependencies",
    [{}, {"openzeppelin": {"5.0.0": SimpleNamespace()}}, {"openzeppelin": {"4.9.3": None}}],
)
def test_unknown_contract(monkeypatch, dependencies):
    monkeypatch.setattr(provider, "project", SimpleNamespace(dependencies=dependencies))
    with pytest.raises(ContractNotFound, match="DoesNotExist"):
        get_contract_container("DoesNotExist")


def test_account_autosign():
    account = StubAccount()
    client = ApeChainClient(account=account, autosign=True)
    assert account.autosign is True
    assert client.sender == DEPLOYER_ADDRESS


def test_deploy(client):
    pending = client.deploy(ContractFactory(name="MutoPool", container=StubContainer()))
    assert pending == PendingTransaction(
        txn_hash="0x" + "ab" * 32, contract_name="MutoPool", contract_address=CONTRACT
    )


def test_rejected_deployment():
    client = ApeChainClient(account=StubAccount(error=ApeException("insufficient funds")))
    with pytest.raises(SubmissionError, match="insufficient funds"):
        client.deploy(ContractFactory(name="MutoPool", container=StubContainer()))


def test_transact_without_contract(client):
    factory = ContractFactory(
        name="ProxyAdmin", container=StubContainer(at_error=ApeException("no code"))
    )
    with pytest.raises(SubmissionError, match="No ProxyAdmin contract"):
        client.transact(factory, CONTRACT, "upgradeAndCall", CONTRACT, TOKEN, b"")


def test_encode_call(client):
    factory = ContractFactory(name="MutoPool", container=StubContainer())
    assert client.encode_call(factory, CONTRACT, "initialize") == b"\x81\x29\xfc\x1c"


def test_encode_call_errors(client):
    container = StubContainer(encode_error=ApeException("bad arguments"))
    factory = ContractFactory(name="MutoPool", container=container)
    with pytest.raises(InvalidArguments, match="bad arguments"):
        client.encode_call(factory, CONTRACT, "initialize", 1)


def test_validate_call(client):
    factory = ContractFactory(name="MutoPool", container=StubContainer([INITIALIZE_ADDRESS]))
    assert client.has_method(factory, "initialize")
    assert not client.has_method(factory, "reinitialize")
    client.validate_call(factory, "initialize", [TOKEN])
    with pytest.raises(InvalidArguments, match="no method 'reinitialize'"):
        client.validate_call(factory, "reinitialize", [])


def test_reads(client, stub_chain):
    stub_chain(head=42)
    receipt = client.get_receipt("0x01")
    assert receipt.block_number == 42
    assert receipt.status is True
    assert client.get_block_number() == 42
    assert client.get_storage(CONTRACT, 0) == SLOT


@pytest.mark.parametrize("read", ["get_receipt", "get_block_number", "get_storage"])
def test_node_errors_are_wrapped(client, stub_chain, read):
    stub_chain(failures=1)
    args = {"get_receipt": ("0x01",), "get_block_number": (), "get_storage": (CONTRACT, 0)}
    with pytest.raises(NodeError, match="connection refused") as exc_info:
        getattr(client, read)(*args[read])
    assert isinstance(exc_info.value, ConnectionError)


def test_confirmations_survive_node_errors(client, stub_chain):
    node = stub_chain(failures=2)
    pending = PendingTransaction(txn_hash="0x01", contract_name="MutoPool", contract_address=CONTRACT)

    confirmed = client.await_confirmations(pending, 1)

    assert confirmed.contract_address == CONTRACT
    assert node.calls > 2


def test_confirmations_time_out_on_unreachable_node(client, stub_chain):
    stub_chain(failures=100)
    pending = PendingTransaction(txn_hash="0x01", contract_name="MutoPool")
    with pytest.raises(ConfirmationTimeout, match="connection refused"):
        client.await_confirmations(pending, 1)


class StubExplorer:
    name = "etherscan"

    def __init__(self, error=None):
        self.error = error
        self.published = []

    def publish_contract(self, address):
        self.published.append(address)
        if self.error:
            raise self.error


def test_explorer_publish():
    stub = StubExplorer()
    ApeExplorer(stub).publish(CONTRACT)
    assert stub.published == [CONTRACT]


def test_explorer_errors_are_wrapped():
    explorer = ApeExplorer(StubExplorer(error=ApeException("Contract source code already verified")))
    with pytest.raises(VerificationFailure, match="already verified"):
        explorer.publish(CONTRACT)


def test_no_explorer_for_network(monkeypatch):
    network = SimpleNamespace(explorer=None)
    monkeypatch.setattr(provider, "networks", SimpleNamespace(provider=SimpleNamespace(network=network)))
    assert ApeExplorer.from_network() is None
