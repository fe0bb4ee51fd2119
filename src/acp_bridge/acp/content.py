"""ACP prompt content to agent-loop text conversion.

The agent loop consumes plain text. Prompt blocks are flattened in order:

- TextContentBlock -> its text
- EmbeddedResourceContentBlock (text) -> fenced attachment labelled with its URI
- EmbeddedResourceContentBlock (blob) -> placeholder line
- ResourceContentBlock -> ``@<uri>`` reference
- ImageContentBlock / AudioContentBlock -> placeholder line
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .types import (
    AudioContentBlock,
    BlobResourceContents,
    EmbeddedResourceContentBlock,
    ImageContentBlock,
    ResourceContentBlock,
    TextContentBlock,
    TextResourceContents,
)

logger = logging.getLogger(__name__)


def _attachment(uri: str, text: str) -> str:
    return f"[Resource: {uri}]\n```\n{text}\n```"


def block_to_text(block: Any) -> str | None:
    """Render one content block, or None if it contributes nothing."""
    if isinstance(block, TextContentBlock):
        return block.text

    if isinstance(block, EmbeddedResourceContentBlock):
        resource = block.resource
        if isinstance(resource, TextResourceContents):
            return _attachment(resource.uri, resource.text)
        if isinstance(resource, BlobResourceContents):
            mime = resource.mimeType or "application/octet-stream"
            return f"[Binary resource: {resource.uri} ({mime})]"

    if isinstance(block, ResourceContentBlock):
        return f"@{block.uri}"

    if isinstance(block, ImageContentBlock):
        return f"[Image: {block.uri or block.mimeType}]"

    if isinstance(block, AudioContentBlock):
        return f"[Audio: {block.mimeType}]"

    # Raw dict blocks (e.g. params that bypassed validation)
    if isinstance(block, dict) and block.get("type") == "text":
        return str(block.get("text", ""))

    logger.debug(f"Skipping unsupported block type: {getattr(block, 'type', type(block).__name__)}")
    return None


def prompt_to_text(blocks: Iterable[Any]) -> str:
    """Flatten prompt content blocks into the text handed to the agent loop."""
    parts = [text for text in (block_to_text(b) for b in blocks) if text is not None]
    return "\n".join(parts)
