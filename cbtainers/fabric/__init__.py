"""Compute fabric gateway and its Docker implementation."""

from cbtainers.fabric.base import (
    STDERR,
    STDOUT,
    ClusterNetwork,
    ComputeUnit,
    ExecChunk,
    ExecSession,
    FabricGateway,
    UnitState,
)

__all__ = [
    "STDERR",
    "STDOUT",
    "ClusterNetwork",
    "ComputeUnit",
    "ExecChunk",
    "ExecSession",
    "FabricGateway",
    "UnitState",
]
