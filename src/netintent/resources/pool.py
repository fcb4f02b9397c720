"""Resource pools: finite allocators of subnets or numeric identifiers.

Each pool is identified by (name, scope) and keeps a mapping from
allocation key to allocated value. Allocation is first-fit ascending:
the lowest free block that fits the request wins, so released blocks are
reused smallest-address-first.

All mutating operations of one pool run under that pool's lock.
"""
import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Optional, Union

from ..errors import (
    NotFoundError,
    ResourceExhaustedError,
    ValidationError,
)
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)

AllocatedValue = Union[str, int]


class PoolKind(str, Enum):
    """Kind of resource managed by a pool."""
    SUBNET = "subnet"
    NUMERIC = "numeric"


@dataclass
class Allocation:
    """A (pool, key) -> value binding held until released."""
    pool: str
    scope: str
    key: str
    value: AllocatedValue
    tag: Optional[str] = None
    owner: Optional[str] = None


class ResourcePool(ABC):
    """Allocation state for one named, scoped pool."""

    kind: PoolKind

    def __init__(
        self,
        name: str,
        scope: str,
        description: str = "",
        tag: Optional[str] = None,
    ):
        self.name = name
        self.scope = scope
        self.description = description
        self.tag = tag
        self._allocations: dict[str, Allocation] = {}
        self._lock = threading.Lock()

    @property
    def context(self) -> str:
        return f"{self.name}/{self.scope}"

    @property
    @abstractmethod
    def space(self) -> Any:
        """Address or number space in its declared form."""
        pass

    @property
    @abstractmethod
    def capacity(self) -> int:
        """Total number of addresses or identifiers in the pool."""
        pass

    @abstractmethod
    def _first_fit(self, size: Optional[int]) -> AllocatedValue:
        """Find the lowest free block for the request. Caller holds the lock."""
        pass

    @abstractmethod
    def _consumed(self, value: AllocatedValue) -> int:
        """Number of addresses or identifiers consumed by one value."""
        pass

    def _track(self, allocation: Allocation) -> None:
        """Hook for subclasses that index allocated values. Caller holds the lock."""
        pass

    def _untrack(self, allocation: Allocation) -> None:
        pass

    def is_compatible(self, kind: PoolKind, space: Any, tag: Optional[str]) -> bool:
        """Check whether a redeclaration describes this same pool."""
        if kind != self.kind:
            return False
        if _normalize_space(kind, space) != self.space:
            return False
        if tag and self.tag and tag != self.tag:
            return False
        return True

    @timed("obtain")
    def obtain(
        self,
        key: str,
        size: Optional[int] = None,
        tag: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> tuple[Allocation, bool]:
        """
        Reserve a block for ``key``.

        Returns the existing allocation if ``key`` already holds one.

        Returns:
            Tuple of (allocation, created)

        Raises:
            ResourceExhaustedError: If no free block fits
        """
        with self._lock:
            existing = self._allocations.get(key)
            if existing is not None:
                logger.info(f"{self.context}: {key} -> {existing.value} (existing entry)")
                return existing, False

            value = self._first_fit(size)
            allocation = Allocation(
                pool=self.name,
                scope=self.scope,
                key=key,
                value=value,
                tag=tag or self.tag,
                owner=owner,
            )
            self._allocations[key] = allocation
            self._track(allocation)

        logger.info(f"{self.context}: {key} -> {value} (new entry)")
        return allocation, True

    def get(self, key: str) -> Allocation:
        """Read-only lookup of the allocation held by ``key``."""
        with self._lock:
            allocation = self._allocations.get(key)
        if allocation is None:
            raise NotFoundError(
                f"No allocation for key={key} in pool {self.context}; "
                f"must be obtained first"
            )
        return allocation

    @timed("release")
    def release(self, key: str) -> Optional[Allocation]:
        """Release the allocation held by ``key``. Unknown keys are a no-op."""
        with self._lock:
            allocation = self._allocations.pop(key, None)
            if allocation is not None:
                self._untrack(allocation)

        if allocation is None:
            logger.debug(f"{self.context}: nothing to release for {key}")
        else:
            logger.info(f"{self.context}: released {allocation.value} held by {key}")
        return allocation

    def allocations(self) -> list[Allocation]:
        """Snapshot of live allocations."""
        with self._lock:
            return list(self._allocations.values())

    def usage(self) -> dict:
        """Utilisation summary for display."""
        allocations = self.allocations()
        used = sum(self._consumed(a.value) for a in allocations)
        return {
            "pool": self.name,
            "scope": self.scope,
            "kind": self.kind.value,
            "allocations": len(allocations),
            "used": used,
            "free": self.capacity - used,
        }

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "scope": self.scope,
            "kind": self.kind.value,
            "space": self._space_to_json(),
            "description": self.description,
            "tag": self.tag,
            "allocations": [asdict(a) for a in self.allocations()],
        }

    def _space_to_json(self) -> Any:
        return self.space

    def restore_allocations(self, allocations: list[dict]) -> None:
        """Load persisted allocations, replacing the current ones."""
        with self._lock:
            self._allocations.clear()
            self._reset_index()
            for data in allocations:
                allocation = Allocation(**data)
                self._allocations[allocation.key] = allocation
                self._track(allocation)

    def _reset_index(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.context}, {self.space})"


class SubnetPool(ResourcePool):
    """Pool of IPv4/IPv6 subnets carved out of one address block."""

    kind = PoolKind.SUBNET

    def __init__(
        self,
        name: str,
        scope: str,
        prefix: str,
        description: str = "",
        tag: Optional[str] = None,
    ):
        super().__init__(name, scope, description, tag)
        self.network = _normalize_space(PoolKind.SUBNET, prefix)
        # key -> (first address, last address + 1) as integers
        self._ranges: dict[str, tuple[int, int]] = {}

    @property
    def space(self) -> Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
        return self.network

    def _space_to_json(self) -> str:
        return str(self.network)

    @property
    def capacity(self) -> int:
        return self.network.num_addresses

    def _consumed(self, value: AllocatedValue) -> int:
        return ipaddress.ip_network(value).num_addresses

    def _track(self, allocation: Allocation) -> None:
        subnet = ipaddress.ip_network(allocation.value)
        start = int(subnet.network_address)
        self._ranges[allocation.key] = (start, start + subnet.num_addresses)

    def _untrack(self, allocation: Allocation) -> None:
        self._ranges.pop(allocation.key, None)

    def _reset_index(self) -> None:
        self._ranges.clear()

    def _first_fit(self, size: Optional[int]) -> str:
        max_prefixlen = self.network.max_prefixlen
        prefixlen = max_prefixlen if size is None else int(size)
        if not 0 <= prefixlen <= max_prefixlen:
            raise ValidationError(
                f"Invalid prefix length /{prefixlen} for pool {self.context}",
                {"prefix-length": f"must be between 0 and {max_prefixlen}"},
            )
        if prefixlen < self.network.prefixlen:
            raise ResourceExhaustedError(
                f"Pool {self.context} ({self.network}) cannot hold a /{prefixlen}"
            )

        block = 1 << (max_prefixlen - prefixlen)
        end = int(self.network.network_address) + self.network.num_addresses

        cursor = int(self.network.network_address)
        for low, high in sorted(self._ranges.values()):
            candidate = _align_up(cursor, block)
            if candidate + block <= low:
                break
            cursor = max(cursor, high)
        else:
            candidate = _align_up(cursor, block)

        if candidate + block > end:
            raise ResourceExhaustedError(
                f"Pool {self.context} ({self.network}) has no free /{prefixlen}"
            )

        return str(type(self.network)((candidate, prefixlen)))


class NumericPool(ResourcePool):
    """Pool of integer identifiers within [min_value, max_value]."""

    kind = PoolKind.NUMERIC

    def __init__(
        self,
        name: str,
        scope: str,
        min_value: int,
        max_value: int,
        description: str = "",
        tag: Optional[str] = None,
    ):
        super().__init__(name, scope, description, tag)
        self.min_value, self.max_value = _normalize_space(
            PoolKind.NUMERIC, (min_value, max_value)
        )
        self._values: set[int] = set()

    @property
    def space(self) -> tuple[int, int]:
        return (self.min_value, self.max_value)

    def _space_to_json(self) -> list[int]:
        return [self.min_value, self.max_value]

    @property
    def capacity(self) -> int:
        return self.max_value - self.min_value + 1

    def _consumed(self, value: AllocatedValue) -> int:
        return 1

    def _track(self, allocation: Allocation) -> None:
        self._values.add(int(allocation.value))

    def _untrack(self, allocation: Allocation) -> None:
        self._values.discard(int(allocation.value))

    def _reset_index(self) -> None:
        self._values.clear()

    def _first_fit(self, size: Optional[int]) -> int:
        if size not in (None, 1):
            raise ValidationError(
                f"Numeric pool {self.context} only allocates single identifiers",
                {"size": "must be 1"},
            )

        candidate = self.min_value
        for value in sorted(self._values):
            if value > candidate:
                break
            if value == candidate:
                candidate += 1

        if candidate > self.max_value:
            raise ResourceExhaustedError(
                f"Pool {self.context} ({self.min_value}-{self.max_value}) is exhausted"
            )
        return candidate


def _align_up(value: int, block: int) -> int:
    return (value + block - 1) // block * block


def _normalize_space(kind: PoolKind, space: Any) -> Any:
    """Convert a declared address or number space to its canonical form."""
    if kind == PoolKind.SUBNET:
        try:
            return ipaddress.ip_network(str(space), strict=True)
        except ValueError as e:
            raise ValidationError(
                f"Invalid subnet pool space {space!r}: {e}",
                {"space": str(e)},
            )

    try:
        min_value, max_value = (int(v) for v in space)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid numeric pool space {space!r}",
            {"space": "expected [min, max]"},
        )
    if min_value > max_value:
        raise ValidationError(
            f"Invalid numeric pool space {space!r}: min exceeds max",
            {"space": "min must not exceed max"},
        )
    return (min_value, max_value)


def create_pool(
    name: str,
    scope: str,
    kind: Union[PoolKind, str],
    space: Any,
    description: str = "",
    tag: Optional[str] = None,
) -> ResourcePool:
    """Factory function to create pool instances."""
    kind = PoolKind(kind)
    if kind == PoolKind.SUBNET:
        return SubnetPool(name, scope, space, description, tag)

    min_value, max_value = _normalize_space(kind, space)
    return NumericPool(name, scope, min_value, max_value, description, tag)


def pool_from_dict(data: dict) -> ResourcePool:
    """Rebuild a pool (including allocations) from ``ResourcePool.to_dict``."""
    pool = create_pool(
        data["name"],
        data["scope"],
        data["kind"],
        data["space"],
        data.get("description", ""),
        data.get("tag"),
    )
    pool.restore_allocations(data.get("allocations", []))
    return pool
