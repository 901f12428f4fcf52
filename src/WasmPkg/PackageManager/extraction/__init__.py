"""Component interface extraction."""

from .decoder import ComponentItem, DecodedComponent, decode_component
from .wit import ExtractionResult, derive_interfaces, extract_interfaces, parse_target, render_wit

__all__ = [
    "ComponentItem",
    "DecodedComponent",
    "decode_component",
    "ExtractionResult",
    "derive_interfaces",
    "extract_interfaces",
    "parse_target",
    "render_wit",
]
