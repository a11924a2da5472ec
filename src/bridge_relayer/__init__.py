"""
Bridge Relayer package.

Lock-mint / burn-release relay service between two EVM chains.
"""

from .config import RelayerConfig
from .models import LockEvent, RelayOutcome, UnlockEvent
from .processor import RelayProcessor
from .relayer import BridgeRelayer

__all__ = ["RelayerConfig", "BridgeRelayer", "RelayProcessor", "LockEvent", "UnlockEvent", "RelayOutcome"]
__version__ = "0.1.0"
