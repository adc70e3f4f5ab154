"""
Provider Adapter Layer

One interface over Replicate (webhook or poll), fal.ai (queue poll) and the
synchronous TTS providers (ElevenLabs, Hume).
"""

from .audio import ElevenLabsAdapter, HumeAdapter
from .base import ProviderAdapter, SynchronousProviderAdapter
from .factory import ProviderFactory
from .fal import FalAdapter
from .replicate import ReplicateAdapter

__all__ = [
    "ElevenLabsAdapter",
    "FalAdapter",
    "HumeAdapter",
    "ProviderAdapter",
    "ProviderFactory",
    "ReplicateAdapter",
    "SynchronousProviderAdapter",
]
