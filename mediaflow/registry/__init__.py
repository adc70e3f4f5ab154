"""
Parameter Mapping & Validation Registry

Per-model schema validation, unified ⇄ provider option mapping and
normalization of provider webhook/poll payloads.
"""

from .catalog import (
    MODEL_REGISTRY,
    ModelRegistryEntry,
    get_model_capabilities,
    get_model_info,
    map_provider_to_unified_options,
    map_unified_to_provider_options,
    parse_model_options,
    parse_model_polling,
    parse_model_webhook,
    prepare_provider_options,
)
from .parsers import normalize_status
from .unified import UNIFIED_FIELDS, ParameterMapping, UnifiedOptions

__all__ = [
    "MODEL_REGISTRY",
    "ModelRegistryEntry",
    "ParameterMapping",
    "UNIFIED_FIELDS",
    "UnifiedOptions",
    "get_model_capabilities",
    "get_model_info",
    "map_provider_to_unified_options",
    "map_unified_to_provider_options",
    "normalize_status",
    "parse_model_options",
    "parse_model_polling",
    "parse_model_webhook",
    "prepare_provider_options",
]
