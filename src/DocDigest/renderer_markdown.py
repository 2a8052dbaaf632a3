from __future__ import annotations

from typing import Iterable, List

from .digest_format import render_placeholder
from .model import (
    IMAGE,
    Block,
    Callout,
    CodeBlock,
    Divider,
    Document,
    Heading,
    ImageBlock,
    ListBlock,
    ListNode,
    Paragraph,
    Quote,
    TableBlock,
    TextRun,
    TodoBlock,
    UnknownBlock,
)


def render_document(doc: Document) -> str:
    """Render the AST to Markdown. Pure and deterministic: same input, same bytes."""
    lines: List[str] = [f"# {_escape_pipes(doc.title)}", ""]
    for block in doc.blocks:
        lines.extend(_dispatch_block(doc, block))
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _dispatch_block(doc: Document, block: Block) -> List[str]:
    if isinstance(block, Heading):
        return [f"{'#' * block.level} {render_text_runs(block.text_runs)}"]
    elif isinstance(block, Paragraph):
        return [render_text_runs(block.text_runs)]
    elif isinstance(block, Quote):
        return [f"> {render_text_runs(block.text_runs)}"]
    elif isinstance(block, Callout):
        return ["> [!NOTE]", f"> {render_text_runs(block.text_runs)}"]
    elif isinstance(block, CodeBlock):
        return [f"```{block.language or ''}", render_text_runs(block.text_runs), "```"]
    elif isinstance(block, Divider):
        return ["---"]
    elif isinstance(block, ListBlock):
        return _render_list_items(block.items, depth=0)
    elif isinstance(block, TodoBlock):
        check = "x" if block.checked else " "
        return [f"- [{check}] {render_text_runs(block.text_runs)}"]
    elif isinstance(block, ImageBlock):
        return _render_image_block(doc, block)
    elif isinstance(block, TableBlock):
        return _render_table_block(block)
    elif isinstance(block, UnknownBlock):
        return [_unsupported_comment(block.raw_type)]
    raise TypeError(f"Unhandled block variant: {type(block).__name__}")


def render_text_runs(text_runs: Iterable[TextRun]) -> str:
    return "".join(_render_text_run(run) for run in text_runs)


def _render_text_run(run: TextRun) -> str:
    text = run.text
    marks = run.marks
    if marks is None:
        return text
    # marks compose by wrapping, so the order is fixed
    if marks.code:
        text = f"`{text}`"
    if marks.bold:
        text = f"**{text}**"
    if marks.italic:
        text = f"*{text}*"
    if marks.strike:
        text = f"~~{text}~~"
    if marks.link:
        text = f"[{text}]({marks.link})"
    return text


def _render_list_items(items: Iterable[ListNode], depth: int) -> List[str]:
    lines: List[str] = []
    indent = "  " * depth
    for item in items:
        prefix = "1." if item.ordered else "-"
        lines.append(f"{indent}{prefix} {render_text_runs(item.text_runs)}")
        if item.children:
            lines.extend(_render_list_items(item.children, depth + 1))
    return lines


def _render_image_block(doc: Document, block: ImageBlock) -> List[str]:
    asset = doc.assets.get(block.asset_id)
    if asset is None:
        return [_unsupported_comment(IMAGE, f"missing asset {block.asset_id}")]
    alt = render_text_runs(block.caption_runs).strip() or f"image-{block.asset_id}"
    return [f"![{alt}]({asset.filename})", "", render_placeholder(block.asset_id)]


def _render_table_block(block: TableBlock) -> List[str]:
    if not block.rows:
        lines = ["| (empty table) |", "| --- |"]
    else:
        header = block.rows[0]
        lines = [_table_row(header), f"| {' | '.join('---' for _ in header)} |"]
        lines.extend(_table_row(row) for row in block.rows[1:])
    if block.truncated:
        lines.append("")
        lines.append(
            f"> Table preview truncated, omitted {block.omitted_rows or 0} rows. See CSV in assets/tables."
        )
    return lines


def _table_row(cells: Iterable[str]) -> str:
    return f"| {' | '.join(_table_cell(cell) for cell in cells)} |"


def _table_cell(text: str) -> str:
    return _escape_pipes(" ".join(text.splitlines()))


def _escape_pipes(text: str) -> str:
    return text.replace("|", "\\|")


def _unsupported_comment(raw_type: int, detail: str | None = None) -> str:
    suffix = f" ({detail})" if detail else ""
    return f"<!-- unsupported block type: {raw_type}{suffix} -->"
