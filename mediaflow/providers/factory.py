import logging
import threading
from typing import Optional

import requests

from .. import config
from ..errors import ConfigurationError
from .audio import ElevenLabsAdapter, HumeAdapter
from .base import ProviderAdapter
from .fal import FalAdapter
from .replicate import ReplicateAdapter

logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "replicate": ReplicateAdapter,
    "fal": FalAdapter,
    "elevenlabs": ElevenLabsAdapter,
    "hume": HumeAdapter,
}


class ProviderFactory:
    """
    Builds provider adapters and caches one per (provider, credential).

    Two organizations with different keys never share an adapter; callers
    that pass no key share the process-wide one resolved from the environment.
    """

    def __init__(
        self,
        adapters: Optional[dict[str, type[ProviderAdapter]]] = None,
        session: Optional[requests.Session] = None,
    ):
        self._adapters = adapters if adapters is not None else dict(ADAPTERS)
        self._session = session
        self._instances: dict[tuple[str, str], ProviderAdapter] = {}
        self._lock = threading.Lock()

    def get_provider(self, provider: str, api_key: Optional[str] = None) -> ProviderAdapter:
        adapter_cls = self._adapters.get(provider)
        if adapter_cls is None:
            raise ConfigurationError(f"Unsupported provider: {provider}")

        credential = api_key or config.provider_key_from_env(provider)
        cache_key = (provider, credential)

        with self._lock:
            adapter = self._instances.get(cache_key)
            if adapter is None:
                # Raises ConfigurationError when no credential resolves
                adapter = adapter_cls(api_key=credential or None, session=self._session)
                self._instances[cache_key] = adapter
                logger.info(f"Created {provider} adapter ({len(self._instances)} cached)")
        return adapter

    def clear(self):
        with self._lock:
            self._instances.clear()
