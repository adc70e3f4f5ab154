"""
Unified (provider-agnostic) options and the mapping contract.

A caller describes a generation once with `UnifiedOptions`; each model's
`ParameterMapping` rewrites that into the exact payload its provider expects
and back again. Anything a mapping cannot carry across is listed in
`lossy_fields` with a note on what happens to it.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import CamelModel

Resolution = Literal["480p", "720p", "1080p"]
AspectRatio = Literal["16:9", "4:3", "1:1", "3:4", "9:16", "21:9", "9:21"]


class UnifiedOptions(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="forbid")

    prompt: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1, le=60)
    resolution: Optional[Resolution] = None
    aspect_ratio: Optional[AspectRatio] = None
    seed: Optional[int] = None
    image: Optional[str] = None
    audio: Optional[str] = None
    video: Optional[str] = None
    start_image: Optional[str] = None
    end_image: Optional[str] = None
    camera_motion: Optional[Literal["fixed", "dynamic"]] = None
    output_format: Optional[Literal["jpg", "jpeg", "png", "webp"]] = None
    output_type: Optional[Literal["green-screen", "alpha-mask", "foreground-mask"]] = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# camelCase names as they appear in job params
UNIFIED_FIELDS = frozenset(to_camel(name) for name in UnifiedOptions.model_fields)


@dataclass(frozen=True)
class ParameterMapping:
    to_provider: Callable[[UnifiedOptions], dict[str, Any]]
    from_provider: Callable[[dict[str, Any]], UnifiedOptions]
    # unified field (camelCase) → what the mapping does to it
    lossy_fields: dict[str, str] = field(default_factory=dict)

    def to_provider_options(self, unified: UnifiedOptions) -> dict[str, Any]:
        return compact(self.to_provider(unified))

    def from_provider_options(self, provider_options: dict[str, Any]) -> UnifiedOptions:
        return self.from_provider(provider_options)


def compact(options: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in options.items() if v is not None}
