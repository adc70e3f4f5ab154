"""
mediaflow — compose generative-media operations into a job graph and run it
across Replicate, fal.ai, ElevenLabs and Hume.
"""

from .client import ExecuteConfig, MediaExecution, execute, get_execution_status
from .errors import (
    ConfigurationError,
    ExecutionFailedError,
    ExtractionError,
    JobTimeoutError,
    MediaflowError,
    ParameterValidationError,
    PlanValidationError,
    ProviderError,
    UploadError,
)
from .graph import (
    ModelRef,
    Operation,
    Pipeline,
    captions,
    compose,
    generate_audio,
    generate_image,
    generate_video,
    layers,
    lip_sync,
    merge,
    remove_background,
    remove_image_background,
    replace_green_screen,
    transcribe,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ExecuteConfig",
    "ExecutionFailedError",
    "ExtractionError",
    "JobTimeoutError",
    "MediaExecution",
    "MediaflowError",
    "ModelRef",
    "Operation",
    "ParameterValidationError",
    "Pipeline",
    "PlanValidationError",
    "ProviderError",
    "UploadError",
    "captions",
    "compose",
    "execute",
    "generate_audio",
    "generate_image",
    "generate_video",
    "get_execution_status",
    "layers",
    "lip_sync",
    "merge",
    "remove_background",
    "remove_image_background",
    "replace_green_screen",
    "transcribe",
]
