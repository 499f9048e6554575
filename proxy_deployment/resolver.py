from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from proxy_deployment.chain import ChainClient
from proxy_deployment.constants import (
    ADDRESS_SIZE,
    EIP1967_ADMIN_SLOT,
    EIP1967_IMPLEMENTATION_SLOT,
    EMPTY_BYTES32,
)
from proxy_deployment.exceptions import NotAProxy
from proxy_deployment.records import ProxyAddresses


class AddressResolver:
    """Derives implementation and admin addresses from the EIP-1967 slots of a proxy."""

    def __init__(self, client: ChainClient):
        self.client = client

    def resolve_implementation(self, proxy_address: ChecksumAddress) -> ChecksumAddress:
        return self._read_address(proxy_address, EIP1967_IMPLEMENTATION_SLOT, "Implementation")

    def resolve_admin(self, proxy_address: ChecksumAddress) -> ChecksumAddress:
        return self._read_address(proxy_address, EIP1967_ADMIN_SLOT, "Admin")

    def resolve(self, proxy_address: ChecksumAddress) -> ProxyAddresses:
        return ProxyAddresses(
            implementation=self.resolve_implementation(proxy_address),
            admin=self.resolve_admin(proxy_address),
        )

    def _read_address(self, proxy_address: ChecksumAddress, slot: int, label: str) -> ChecksumAddress:
        value = bytes(HexBytes(self.client.get_storage(proxy_address, slot)))
        if len(value) != len(EMPTY_BYTES32):
            raise NotAProxy(
                f"{label} slot for contract at {proxy_address} holds {len(value)} bytes; "
                "expected 32."
            )
        if value == EMPTY_BYTES32:
            raise NotAProxy(
                f"{label} slot for contract at {proxy_address} is empty. "
                "Are you sure this is an EIP1967-compatible proxy?"
            )

        padding, address = value[:-ADDRESS_SIZE], value[-ADDRESS_SIZE:]
        if any(padding):
            raise NotAProxy(
                f"{label} slot for contract at {proxy_address} does not hold an address: "
                f"0x{value.hex()}"
            )
        return to_checksum_address(address)
