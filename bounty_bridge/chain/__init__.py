"""Chain access: read-only reader and signing writer."""

from .abi import ESCROW, REGISTRY
from .reader import ChainReader
from .writer import ChainWriter

__all__ = ["ChainReader", "ChainWriter", "REGISTRY", "ESCROW"]
