"""Response Normalizer — turns Messages API content blocks into one string.

Rules:
  - non-empty text blocks are joined with a newline
  - otherwise tool-use payloads are serialized as compact JSON
  - text wins when both kinds are present
  - neither kind present -> ResponseFormatError
"""

from __future__ import annotations

import json
import logging
from typing import Any

from budget_toolkit.gateway.errors import NO_TEXT_CONTENT_MESSAGE, ResponseFormatError
from budget_toolkit.gateway.types import ResponseBlock, TextBlock, ToolUseBlock

logger = logging.getLogger(__name__)


def parse_content_blocks(data: dict[str, Any]) -> list[ResponseBlock]:
    """Convert a raw response body into typed blocks.

    Block kinds other than ``text`` and ``tool_use`` are skipped.
    """
    if not isinstance(data, dict):
        raise ResponseFormatError(f"Expected a JSON object response, got {type(data).__name__}")
    content = data.get("content")
    if not isinstance(content, list):
        raise ResponseFormatError("Response has no content list")

    blocks: list[ResponseBlock] = []
    for raw in content:
        if not isinstance(raw, dict):
            continue
        kind = raw.get("type")
        if kind == "text" and isinstance(raw.get("text"), str):
            blocks.append(TextBlock(text=raw["text"]))
        elif kind == "tool_use":
            blocks.append(ToolUseBlock(input=raw.get("input"), name=raw.get("name", ""), id=raw.get("id", "")))
        else:
            logger.debug("Skipping content block of type %r", kind)
    return blocks


def normalize_blocks(blocks: list[ResponseBlock]) -> str:
    """Reduce blocks to the canonical response string."""
    texts: list[str] = []
    payloads: list[str] = []

    for block in blocks:
        if isinstance(block, TextBlock):
            if block.text:
                texts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            if block.input is not None:
                payloads.append(json.dumps(block.input, separators=(",", ":"), ensure_ascii=False))
        else:
            raise TypeError(f"Unsupported response block: {block!r}")

    if texts:
        if payloads:
            logger.debug("Response mixes text and tool_use blocks; using text")
        return "\n".join(texts)
    if payloads:
        return "\n".join(payloads)
    raise ResponseFormatError(NO_TEXT_CONTENT_MESSAGE)


def normalize_response(data: dict[str, Any]) -> str:
    """Parse and normalize a raw response body in one step."""
    return normalize_blocks(parse_content_blocks(data))
