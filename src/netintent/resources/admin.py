"""ResourceAdmin - routes obtain/get/release calls to the right pool.

One ResourceAdmin instance owns the pool store for the whole platform.
It is created at platform start, injected into the reconciliation engine
and the intent handlers, and persisted/torn down at shutdown.

Usage:
    admin = ResourceAdmin()
    admin.create_ip_pool("ip-pool", "global", "used for iplink",
                         "192.168.192.0/18", "network-link")

    subnet = admin.obtain_subnet("ip-pool", "global", "link-42", 31)
    admin.get_subnet("ip-pool", "global", "link-42")   # same value
    admin.release_subnet("ip-pool", "global", "link-42")
"""
import json
import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from ..config.pools import load_pool_declarations
from ..errors import NotFoundError, ResourceConflictError
from ..utils.logging_config import timed, timed_section_sync
from .pool import (
    AllocatedValue,
    PoolKind,
    ResourcePool,
    create_pool,
    pool_from_dict,
)

logger = logging.getLogger(__name__)

# Allocations created inside the innermost all_or_nothing() block
_journal: ContextVar[Optional[list[tuple[str, str, str]]]] = ContextVar(
    "netintent_allocation_journal", default=None
)


class ResourceAdmin:
    """Facade over all resource pools, keyed by (pool name, scope)."""

    def __init__(self):
        self._pools: dict[tuple[str, str], ResourcePool] = {}
        # Guards the registry only; each pool serializes its own allocations
        self._lock = threading.Lock()

    # === Pool management ===

    @timed("create_pool")
    def create_pool(
        self,
        pool: str,
        scope: str,
        kind: Union[PoolKind, str],
        description: str = "",
        space: Any = None,
        tag: Optional[str] = None,
    ) -> ResourcePool:
        """
        Declare a pool, if it does not already exist.

        Redeclaring an identical pool is a no-op.

        Raises:
            ResourceConflictError: If the pool exists with a different kind,
                space or tag
        """
        kind = PoolKind(kind)
        with self._lock:
            existing = self._pools.get((pool, scope))
            if existing is not None:
                if not existing.is_compatible(kind, space, tag):
                    raise ResourceConflictError(
                        f"Pool {pool}/{scope} already declared as "
                        f"{existing.kind.value} {existing.space}; "
                        f"cannot redeclare as {kind.value} {space}"
                    )
                return existing

            new_pool = create_pool(pool, scope, kind, space, description, tag)
            self._pools[(pool, scope)] = new_pool

        logger.info(f"Created {kind.value} pool {pool}/{scope} ({new_pool.space})")
        return new_pool

    def create_ip_pool(
        self,
        pool: str,
        scope: str,
        description: str,
        prefix: str,
        purpose: Optional[str] = None,
    ) -> ResourcePool:
        return self.create_pool(pool, scope, PoolKind.SUBNET, description, prefix, purpose)

    def create_numeric_pool(
        self,
        pool: str,
        scope: str,
        description: str,
        min_value: int,
        max_value: int,
    ) -> ResourcePool:
        return self.create_pool(
            pool, scope, PoolKind.NUMERIC, description, (min_value, max_value)
        )

    def declare_from_file(self, config_path: str) -> list[ResourcePool]:
        """Declare every pool listed in a pools.yaml file."""
        return [
            self.create_pool(d.name, d.scope, d.kind, d.description, d.space, d.tag)
            for d in load_pool_declarations(config_path)
        ]

    def get_pool(self, pool: str, scope: str) -> ResourcePool:
        with self._lock:
            found = self._pools.get((pool, scope))
        if found is None:
            raise NotFoundError(f"Unknown resource pool {pool}/{scope}")
        return found

    def pools(self) -> list[ResourcePool]:
        with self._lock:
            return list(self._pools.values())

    def usage(self) -> list[dict]:
        """Utilisation of every pool."""
        return [p.usage() for p in self.pools()]

    # === Allocation ===

    def obtain(
        self,
        pool: str,
        scope: str,
        size: Optional[int],
        tag: Optional[str],
        key: str,
        owner: Optional[str] = None,
    ) -> AllocatedValue:
        """
        Obtain a value for ``key`` from pool (pool, scope).

        Idempotent: repeated calls for the same key return the same value.

        Args:
            pool: Pool name
            scope: Pool scope, for example 'global'
            size: Prefix length for subnet pools, None or 1 for numeric pools
            tag: Purpose tag stored with the allocation
            key: Allocation reference, typically derived from the intent target
            owner: Optional owner reference (intent type)

        Raises:
            NotFoundError: If the pool is not declared
            ResourceExhaustedError: If no free block fits
        """
        allocation, created = self.get_pool(pool, scope).obtain(key, size, tag, owner)

        journal = _journal.get()
        if created and journal is not None:
            journal.append((pool, scope, key))

        return allocation.value

    def get(self, pool: str, scope: str, key: str) -> AllocatedValue:
        """
        Read-only lookup; never allocates.

        Raises:
            NotFoundError: If the pool is unknown or ``key`` holds no allocation
        """
        return self.get_pool(pool, scope).get(key).value

    def release(self, pool: str, scope: str, key: str) -> None:
        """Release the allocation held by ``key``. Idempotent."""
        try:
            found = self.get_pool(pool, scope)
        except NotFoundError:
            logger.warning(f"Release of {key} from undeclared pool {pool}/{scope} ignored")
            return
        found.release(key)

    def obtain_subnet(
        self,
        pool: str,
        scope: str,
        key: str,
        prefix_length: int,
        purpose: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> str:
        return self.obtain(pool, scope, prefix_length, purpose, key, owner)

    def get_subnet(self, pool: str, scope: str, key: str) -> str:
        return self.get(pool, scope, key)

    def release_subnet(self, pool: str, scope: str, key: str) -> None:
        self.release(pool, scope, key)

    def obtain_id(
        self,
        pool: str,
        scope: str,
        key: str,
        owner: Optional[str] = None,
    ) -> int:
        return self.obtain(pool, scope, None, None, key, owner)

    def get_id(self, pool: str, scope: str, key: str) -> int:
        return self.get(pool, scope, key)

    def release_id(self, pool: str, scope: str, key: str) -> None:
        self.release(pool, scope, key)

    @contextmanager
    def all_or_nothing(self) -> Iterator[None]:
        """
        Release allocations created inside the block if the block raises.

        Allocations that already existed before the block are left alone.

        Usage:
            with admin.all_or_nothing():
                admin.obtain_subnet("ip-pool", "global", key, 31)
                admin.obtain_id("service-identifiers", "global", key)
        """
        journal: list[tuple[str, str, str]] = []
        token = _journal.set(journal)
        try:
            yield
        except Exception:
            for pool, scope, key in reversed(journal):
                logger.info(f"Rolling back allocation {key} in {pool}/{scope}")
                self.release(pool, scope, key)
            raise
        finally:
            _journal.reset(token)

        outer = _journal.get()
        if outer is not None:
            outer.extend(journal)

    # === Persistence ===

    def snapshot(self) -> dict:
        """Serializable view of all pools and their allocations."""
        return {"pools": [p.to_dict() for p in self.pools()]}

    def restore(self, data: dict) -> None:
        """Replace the pool store with a snapshot."""
        pools = [pool_from_dict(entry) for entry in data.get("pools", [])]
        with self._lock:
            self._pools = {(p.name, p.scope): p for p in pools}
        logger.info(f"Restored {len(pools)} resource pools")

    def save(self, path: str) -> None:
        """Persist the pool store to a JSON file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with timed_section_sync("save_pools", context=str(target), pools=len(self._pools)):
            tmp.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")
            tmp.replace(target)
        logger.info(f"Saved resource pools to {target}")

    @classmethod
    def load(cls, path: str) -> "ResourceAdmin":
        """Create a ResourceAdmin from a file written by ``save``."""
        admin = cls()
        admin.restore(json.loads(Path(path).read_text(encoding="utf-8")))
        return admin
