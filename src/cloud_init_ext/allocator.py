"""Lowest-free-slot IPv4 address allocation.

The pool is a single flat range told apart only by the last octet. Assigned
addresses are sorted by last octet and scanned for the first gap; the leading
octets of the address below the gap are carried into the result.
"""

from collections.abc import Iterable
from ipaddress import IPv4Address, IPv4Network, IPv6Address

import structlog

from cloud_init_ext.errors import PoolExhausted, UnsupportedAddressFamily

logger = structlog.get_logger(__name__)


class AddressAllocator:
    """Computes the next free address of the pool.

    Args:
        network: Pool network; supplies the leading octets when nothing is assigned
        first_host: Last octet handed out to the first node
        ceiling: Highest last octet that may be handed out
    """

    def __init__(
        self,
        network: IPv4Network = IPv4Network("10.10.0.0/24"),
        first_host: int = 1,
        ceiling: int = 254,
    ):
        if not 1 <= first_host <= ceiling <= 254:  # noqa: PLR2004
            raise ValueError(f"Invalid pool bounds: first_host={first_host}, ceiling={ceiling}")
        self.network = network
        self.first_host = first_host
        self.ceiling = ceiling

    @property
    def first_address(self) -> IPv4Address:
        return _with_last_octet(self.network.network_address, self.first_host)

    def next_free(self, assigned: Iterable[IPv4Address | IPv6Address]) -> IPv4Address:
        """Find the lowest free address above the first assigned one.

        Assigned addresses whose last octet is below ``first_host`` are ignored.

        Raises:
            UnsupportedAddressFamily: Any assigned address is not IPv4
            PoolExhausted: No free address at or below the ceiling
        """
        addrs = list(assigned)
        # Family check comes before any gap is considered
        for addr in addrs:
            if addr.version != 4:  # noqa: PLR2004
                raise UnsupportedAddressFamily(str(addr))

        # Octets below first_host are reserved and never start the scan
        addrs = sorted((a for a in addrs if _last_octet(a) >= self.first_host), key=_last_octet)
        if not addrs:
            logger.debug("pool_empty", address=str(self.first_address))
            return self.first_address

        prev: IPv4Address | None = None
        for addr in addrs:
            if prev is None:
                prev = addr
                continue
            if _last_octet(addr) - _last_octet(prev) > 1:
                logger.debug("gap_found", below=str(prev), above=str(addr))
                break
            prev = addr

        if _last_octet(prev) >= self.ceiling:
            raise PoolExhausted(str(self.network), self.ceiling)

        address = _with_last_octet(prev, _last_octet(prev) + 1)
        if address not in self.network:
            logger.warning("address_outside_pool", ip=str(address), network=str(self.network))
        return address


def _last_octet(addr: IPv4Address) -> int:
    return addr.packed[-1]


def _with_last_octet(addr: IPv4Address, octet: int) -> IPv4Address:
    return IPv4Address(addr.packed[:3] + bytes([octet]))
