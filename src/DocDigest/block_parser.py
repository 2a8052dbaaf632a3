"""Normalize a provider block list into the Document AST."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import unquote

from .model import (
    BULLET,
    CALLOUT,
    CODE,
    DIVIDER,
    HEADING1,
    HEADING9,
    IMAGE,
    ORDERED,
    PAGE,
    PARAGRAPH,
    QUOTE,
    TABLE,
    TODO,
    Asset,
    Block,
    Callout,
    CodeBlock,
    Divider,
    Document,
    DocumentSource,
    Heading,
    ImageBlock,
    ListBlock,
    ListNode,
    Paragraph,
    Quote,
    TableBlock,
    TextMarks,
    TextRun,
    TodoBlock,
    UnknownBlock,
)
from .schema import validate_document

logger = logging.getLogger(__name__)

RawBlock = Mapping[str, Any]

LIST_TYPES = {BULLET, ORDERED}
MAX_HEADING_LEVEL = 6
MAX_LIST_DEPTH = 64

_TEXT_CONTAINERS = (
    "text",
    "heading1",
    "heading2",
    "heading3",
    "heading4",
    "heading5",
    "heading6",
    "heading7",
    "heading8",
    "heading9",
    "bullet",
    "ordered",
    "quote",
    "callout",
    "todo",
    "table_cell",
    "code",
)


def normalize(raw_blocks: Iterable[RawBlock], doc_id: str, title: str, source_url: str) -> Document:
    """
    Build a validated Document from the provider's flat block list.

    Malformed input (dangling ids, cycles, unsupported types) degrades to skipped
    references or ``unknown`` blocks. Raises DocumentValidationError only if the
    produced AST itself breaks the schema.
    """
    block_by_id = _index_blocks(raw_blocks)
    root_children: List[str] = []
    for block in block_by_id.values():
        if _block_type(block) == PAGE:
            root_children.extend(_child_ids(block))

    blocks: List[Block] = []
    assets: Dict[str, Asset] = {}
    emitted: set[str] = set()
    for block_id in root_children:
        block = block_by_id.get(block_id)
        if block is None:
            logger.debug("Skipping dangling root reference %s", block_id)
            continue
        if block_id in emitted:
            logger.debug("Skipping repeated root reference %s", block_id)
            continue
        doc_block = _convert_block(block, block_by_id, assets)
        if doc_block is None:
            continue
        emitted.add(block_id)
        blocks.append(doc_block)

    document = Document(
        doc_id=doc_id,
        title=title,
        source=DocumentSource(url=source_url),
        blocks=blocks,
        assets=assets,
    )
    logger.info("Normalized document %s: %d blocks, %d assets", doc_id, len(blocks), len(assets))
    return validate_document(document)


def _convert_block(block: RawBlock, block_by_id: Mapping[str, RawBlock], assets: Dict[str, Asset]) -> Optional[Block]:
    block_id = _block_id(block)
    block_type = _block_type(block)

    if block_type == PARAGRAPH:
        return Paragraph(id=block_id, text_runs=text_runs_from_block(block))
    if HEADING1 <= block_type <= HEADING9:
        # provider levels 7-9 collapse to the Markdown maximum
        level = min(block_type - HEADING1 + 1, MAX_HEADING_LEVEL)
        return Heading(id=block_id, level=level, text_runs=text_runs_from_block(block))
    if block_type in LIST_TYPES:
        parent = block_by_id.get(str(block.get("parent_id") or ""))
        if parent is not None and _block_type(parent) in LIST_TYPES:
            # collected as a nested item by the owning list
            logger.debug("Skipping nested list item %s at top level", block_id)
            return None
        return ListBlock(
            id=block_id,
            ordered=block_type == ORDERED,
            items=[collect_list_node(block, block_by_id)],
        )
    if block_type == QUOTE:
        return Quote(id=block_id, text_runs=text_runs_from_block(block))
    if block_type == CALLOUT:
        return Callout(id=block_id, text_runs=text_runs_from_block(block))
    if block_type == CODE:
        code = _mapping(block.get("code"))
        language = code.get("language")
        return CodeBlock(
            id=block_id,
            text_runs=text_runs_from_block(block),
            language=str(language) if language not in (None, "") else None,
        )
    if block_type == DIVIDER:
        return Divider(id=block_id)
    if block_type == TODO:
        style = _mapping(_mapping(block.get("todo")).get("style"))
        return TodoBlock(id=block_id, checked=bool(style.get("done")), text_runs=text_runs_from_block(block))
    if block_type == IMAGE:
        return _convert_image(block, assets)
    if block_type == TABLE:
        return TableBlock(id=block_id, rows=extract_table_rows(block, block_by_id))
    return UnknownBlock(id=block_id, raw_type=block_type)


def _convert_image(block: RawBlock, assets: Dict[str, Asset]) -> Block:
    block_id = _block_id(block)
    image = _mapping(block.get("image"))
    token = image.get("token") or image.get("file_token")
    if not token:
        return UnknownBlock(id=block_id, raw_type=IMAGE)
    asset_id = str(token)
    if asset_id not in assets:
        assets[asset_id] = Asset(
            id=asset_id,
            token=asset_id,
            filename=f"assets/images/{sanitize_filename(asset_id)}.bin",
            source_block_id=block_id,
        )
    alt = image.get("alt")
    caption_runs = [TextRun(text=str(alt))] if alt else []
    return ImageBlock(id=block_id, asset_id=asset_id, caption_runs=caption_runs)


def sanitize_filename(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", value)


def text_runs_from_block(block: RawBlock) -> List[TextRun]:
    container: Mapping[str, Any] = {}
    for key in _TEXT_CONTAINERS:
        candidate = block.get(key)
        if isinstance(candidate, Mapping):
            container = candidate
            break
    elements = container.get("elements")
    if not isinstance(elements, Sequence) or isinstance(elements, str):
        return []
    runs: List[TextRun] = []
    for element in elements:
        if isinstance(element, Mapping):
            runs.append(_text_run_from_element(element))
    return runs


def _text_run_from_element(element: Mapping[str, Any]) -> TextRun:
    text = (
        _mapping(element.get("text_run")).get("content")
        or _mapping(element.get("equation")).get("content")
        or _mapping(element.get("mention_doc")).get("title")
        or _mapping(_mapping(element.get("reminder")).get("mention")).get("title")
        or _mapping(element.get("person")).get("name")
        or ""
    )
    style = _mapping(element.get("text_element_style"))
    if not style:
        style = _mapping(_mapping(element.get("text_run")).get("text_element_style"))
    link = _mapping(style.get("link")).get("url") or _mapping(element.get("docs_link")).get("url")

    marks = TextMarks(
        bold=True if style.get("bold") else None,
        italic=True if style.get("italic") else None,
        strike=True if style.get("strikethrough") else None,
        code=True if style.get("inline_code") else None,
        link=unquote(str(link)) if link else None,
    )
    has_marks = any(value is not None for value in vars(marks).values())
    return TextRun(text=str(text), marks=marks if has_marks else None)


def collect_list_node(
    block: RawBlock,
    block_by_id: Mapping[str, RawBlock],
    visited: Optional[set[str]] = None,
    depth: int = 0,
) -> ListNode:
    """
    Build a ListNode from a bullet/ordered block and its bullet/ordered descendants.

    ``visited`` is shared by the whole traversal: a block reached a second time
    (cycle or shared child) becomes a terminal node with no children.
    """
    if visited is None:
        visited = set()
    block_id = _block_id(block)
    node = ListNode(
        id=block_id,
        ordered=_block_type(block) == ORDERED,
        text_runs=text_runs_from_block(block),
    )
    if block_id in visited:
        logger.debug("List cycle at %s, emitting terminal node", block_id)
        return node
    visited.add(block_id)
    if depth >= MAX_LIST_DEPTH:
        logger.debug("List depth limit reached at %s", block_id)
        return node

    for child_id in _child_ids(block):
        child = block_by_id.get(child_id)
        if child is None or _block_type(child) not in LIST_TYPES:
            continue
        node.children.append(collect_list_node(child, block_by_id, visited, depth + 1))
    return node


def collect_plain_text(block_id: str, block_by_id: Mapping[str, RawBlock]) -> str:
    """
    Own text plus all descendant text in document order, space-joined. Drops all
    formatting. Walks with an explicit stack, so arbitrarily deep or cyclic
    descendant chains terminate.
    """
    parts: List[str] = []
    visited: set[str] = set()
    stack = [block_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        block = block_by_id.get(current)
        if block is None:
            continue
        own = "".join(run.text for run in text_runs_from_block(block)).strip()
        if own:
            parts.append(own)
        stack.extend(reversed(_child_ids(block)))
    return " ".join(parts)


def extract_table_rows(table_block: RawBlock, block_by_id: Mapping[str, RawBlock]) -> List[List[str]]:
    table = _mapping(table_block.get("table"))
    grid = _cell_grid(table)
    if grid:
        return [[collect_plain_text(cell_id, block_by_id) for cell_id in row] for row in grid]

    rows: List[List[str]] = []
    for row_id in _child_ids(table_block):
        row_block = block_by_id.get(row_id)
        if row_block is None:
            continue
        cell_ids = _child_ids(row_block)
        if not cell_ids:
            continue
        rows.append([collect_plain_text(cell_id, block_by_id) for cell_id in cell_ids])
    return rows


def _cell_grid(table: Mapping[str, Any]) -> List[List[str]]:
    cells = table.get("cells")
    if not isinstance(cells, Sequence) or isinstance(cells, str) or not cells:
        return []
    if all(isinstance(row, Sequence) and not isinstance(row, str) for row in cells):
        return [[str(cell_id) for cell_id in row] for row in cells]

    # flat row-major list sized by property.column_size
    column_size = _mapping(table.get("property")).get("column_size")
    flat = [str(cell_id) for cell_id in cells if isinstance(cell_id, (str, int))]
    if not isinstance(column_size, int) or column_size <= 0:
        return [flat]
    return [flat[i : i + column_size] for i in range(0, len(flat), column_size)]


def _index_blocks(raw_blocks: Iterable[RawBlock]) -> Dict[str, RawBlock]:
    block_by_id: Dict[str, RawBlock] = {}
    for block in raw_blocks:
        if not isinstance(block, Mapping):
            continue
        block_id = block.get("block_id")
        if block_id is None:
            continue
        block_by_id.setdefault(str(block_id), block)
    return block_by_id


def _block_id(block: RawBlock) -> str:
    return str(block.get("block_id"))


def _block_type(block: RawBlock) -> int:
    value = block.get("block_type")
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _child_ids(block: RawBlock) -> List[str]:
    children = block.get("children")
    if not isinstance(children, Sequence) or isinstance(children, str):
        return []
    return [str(child) for child in children]


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}
