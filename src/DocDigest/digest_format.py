"""
The ``image-digest`` placeholder fence embedded after every image in the Markdown:

    ```image-digest
    id: <asset id>
    role: <diagram|screenshot|chart|photo|whiteboard|unknown>
    summary: "<escaped string>"
    key_points:
      - "<item>"
    need_open_image_when:
      - "<item>"
    confidence: <0.00>
    ```

The body is valid YAML, so existing digests can be read back with ``read_digests``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

import yaml
from markdown_it import MarkdownIt

from .errors import CaptionSchemaError
from .model import ImageCaption
from .schema import coerce_caption

FENCE_INFO = "image-digest"
PLACEHOLDER_SUMMARY = "TODO: fill image summary"

_NEWLINE_RE = re.compile(r"\r\n|\r|\n")
_md = MarkdownIt("commonmark")


@dataclass
class DigestFence:
    """A located ``image-digest`` fence; ``text[start:end]`` is the whole fence."""

    asset_id: str
    start: int
    end: int
    body: str


def format_digest(asset_id: str, digest: ImageCaption) -> str:
    return "\n".join(
        [
            f"```{FENCE_INFO}",
            f"id: {asset_id}",
            f"role: {digest.role}",
            f"summary: {_quote(digest.summary)}",
            "key_points:",
            *_list_lines(digest.key_points),
            "need_open_image_when:",
            *_list_lines(digest.need_open_image_when),
            f"confidence: {digest.confidence:.2f}",
            "```",
        ]
    )


def render_placeholder(asset_id: str) -> str:
    """The canonical empty fence the renderer emits after each image."""
    return format_digest(asset_id, ImageCaption(role="unknown", summary=PLACEHOLDER_SUMMARY, confidence=0.0))


def find_digest_fences(markdown: str) -> List[DigestFence]:
    """All closed ``image-digest`` fences in document order."""
    lines, starts = _split_lines(markdown)
    fences: List[DigestFence] = []
    for token in _md.parse(markdown):
        if token.type != "fence" or token.info.strip() != FENCE_INFO or not token.map:
            continue
        if not token.markup.startswith("`"):
            continue
        open_idx, end_idx = token.map
        close_idx = end_idx - 1
        if close_idx <= open_idx or close_idx >= len(lines):
            continue
        opening = lines[open_idx]
        if not opening.lstrip().startswith("```") or not lines[close_idx].strip().startswith("```"):
            # unclosed fence, or one nested in a container with a line prefix
            continue
        asset_id = _fence_id(token.content)
        if asset_id is None:
            continue
        fences.append(
            DigestFence(
                asset_id=asset_id,
                start=starts[open_idx] + len(opening) - len(opening.lstrip()),
                end=starts[close_idx] + len(lines[close_idx]),
                body=token.content,
            )
        )
    return fences


def find_placeholder(fences: List[DigestFence], asset_id: str) -> Optional[DigestFence]:
    for fence in fences:
        if fence.asset_id == asset_id:
            return fence
    return None


def parse_digest(body: str, asset_id: str | None = None) -> ImageCaption:
    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError as exc:
        raise CaptionSchemaError(f"Digest body is not valid YAML: {exc}", asset_id=asset_id) from exc
    if not isinstance(data, dict):
        raise CaptionSchemaError("Digest body must be a mapping", asset_id=asset_id)
    data.pop("id", None)
    for key in ("key_points", "need_open_image_when"):
        value = data.get(key)
        if isinstance(value, list):
            data[key] = [str(item) for item in value if item not in (None, "")]
        elif value is None:
            data[key] = []
    if isinstance(data.get("summary"), (int, float)):
        data["summary"] = str(data["summary"])
    return coerce_caption(data, asset_id=asset_id)


def read_digests(markdown: str) -> Dict[str, ImageCaption]:
    """Parse every digest fence; the first fence per asset id wins."""
    digests: Dict[str, ImageCaption] = {}
    for fence in find_digest_fences(markdown):
        if fence.asset_id not in digests:
            digests[fence.asset_id] = parse_digest(fence.body, asset_id=fence.asset_id)
    return digests


def _fence_id(body: str) -> Optional[str]:
    for line in body.splitlines():
        if line.startswith("id:"):
            return line[3:].strip()
    return None


def _list_lines(items: List[str]) -> List[str]:
    if not items:
        return ['  - ""']
    return [f"  - {_quote(item)}" for item in items]


def _quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _split_lines(text: str) -> tuple[List[str], List[int]]:
    lines: List[str] = []
    starts: List[int] = []
    pos = 0
    for match in _NEWLINE_RE.finditer(text):
        starts.append(pos)
        lines.append(text[pos : match.start()])
        pos = match.end()
    starts.append(pos)
    lines.append(text[pos:])
    return lines, starts
