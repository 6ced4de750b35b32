"""Page fetching, rendering and value extraction."""

from .consent import AntiBotResult, ConsentHandler, detect_consent_overlay, detect_page_block_reason
from .extractor import ExtractionResult, Extractor, looks_client_rendered
from .renderer import PlaywrightRenderer, RenderedPage, Renderer

__all__ = [
    'AntiBotResult',
    'ConsentHandler',
    'detect_consent_overlay',
    'detect_page_block_reason',
    'ExtractionResult',
    'Extractor',
    'looks_client_rendered',
    'PlaywrightRenderer',
    'RenderedPage',
    'Renderer',
]
