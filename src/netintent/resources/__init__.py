"""Pooled resource allocation (subnets and numeric identifiers)."""
from .pool import (
    Allocation,
    NumericPool,
    PoolKind,
    ResourcePool,
    SubnetPool,
    create_pool,
    pool_from_dict,
)
from .admin import ResourceAdmin

__all__ = [
    "Allocation",
    "NumericPool",
    "PoolKind",
    "ResourcePool",
    "SubnetPool",
    "create_pool",
    "pool_from_dict",
    "ResourceAdmin",
]
