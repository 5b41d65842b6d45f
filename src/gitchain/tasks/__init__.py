"""Composable asynchronous task chains.

This package provides:
    - TaskChain: chain nodes with then/then_run/and_then/fuse composition
    - ProcessTask: a chain node running one external process
    - ProcessRunner: asyncio subprocess backend with cancellation
    - Output processors turning stdout into typed values
"""

from __future__ import annotations

from .chain import ChainState, TaskChain, batched, fuse, spool
from .process import ProcessDescriptor, ProcessOutput, ProcessRunner, ProcessTask
from .processors import (
    FirstLineProcessor,
    LinesOutputProcessor,
    OutputProcessor,
    PathOutputProcessor,
    StringOutputProcessor,
)

__all__ = [
    "ChainState",
    "FirstLineProcessor",
    "LinesOutputProcessor",
    "OutputProcessor",
    "PathOutputProcessor",
    "ProcessDescriptor",
    "ProcessOutput",
    "ProcessRunner",
    "ProcessTask",
    "StringOutputProcessor",
    "TaskChain",
    "batched",
    "fuse",
    "spool",
]
