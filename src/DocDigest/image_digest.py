"""
Fill ``image-digest`` placeholders in rendered Markdown with captions.

Phases: scan (locate one placeholder per image asset), caption (a small pool of
worker threads pulling from a shared cursor), commit (splice replacements back in
descending offset order).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .captioners import ImageCaptioner, MockImageCaptioner, build_captioner
from .config import DigestSettings, load_settings
from .digest_format import find_digest_fences, find_placeholder, format_digest
from .errors import CaptionError, DigestAbortedError, DigestInputError
from .model import Document, ImageBlock, ImageCaption
from .schema import coerce_caption, document_from_json
from .utils import read_text, safe_write_text

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 220
DEFAULT_CONCURRENCY = 3


@dataclass
class DigestTask:
    asset_id: str
    image_path: Path
    start: int
    end: int
    context: str = ""
    # Written only by the worker that claimed this task, exactly once.
    replacement: Optional[str] = None
    error: Optional[CaptionError] = None


class _TaskCursor:
    """Shared work cursor. Each index is handed to exactly one worker."""

    def __init__(self, total: int):
        self._total = total
        self._next = 0
        self._closed = False
        self._lock = threading.Lock()

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._closed or self._next >= self._total:
                return None
            index = self._next
            self._next += 1
            return index

    def close(self) -> None:
        """Stop handing out work; claims already made still run to completion."""
        with self._lock:
            self._closed = True


def scan_digest_tasks(document: Document, markdown: str, assets_dir: Path) -> List[DigestTask]:
    """
    One task per image asset that has a placeholder in ``markdown``.

    Images without an asset or without a placeholder are skipped: the AST and the
    Markdown may have been regenerated independently.
    """
    fences = find_digest_fences(markdown)
    spans = [(fence.start, fence.end) for fence in fences]
    tasks: List[DigestTask] = []
    seen: set[str] = set()
    for block in document.blocks:
        if not isinstance(block, ImageBlock) or block.asset_id in seen:
            continue
        asset = document.assets.get(block.asset_id)
        if asset is None:
            continue
        fence = find_placeholder(fences, block.asset_id)
        if fence is None:
            logger.debug("No placeholder for asset %s", block.asset_id)
            continue
        seen.add(block.asset_id)
        tasks.append(
            DigestTask(
                asset_id=block.asset_id,
                image_path=Path(assets_dir) / Path(asset.filename).name,
                start=fence.start,
                end=fence.end,
                context=extract_nearby_context(markdown, fence.start, fence.end, spans),
            )
        )
    return tasks


def extract_nearby_context(
    markdown: str,
    start: int,
    end: int,
    fence_spans: Iterable[Tuple[int, int]] = (),
    window: int = CONTEXT_WINDOW,
) -> str:
    """Raw text within ``window`` chars around ``[start, end)``, minus any digest fences."""
    spans = sorted(fence_spans)
    before = _text_outside(markdown, max(0, start - window), start, spans)
    after = _text_outside(markdown, end, min(len(markdown), end + window), spans)
    return f"{before}\n{after}".strip()


def _text_outside(text: str, lo: int, hi: int, spans: Sequence[Tuple[int, int]]) -> str:
    pieces: List[str] = []
    cursor = lo
    for span_start, span_end in spans:
        if span_end <= cursor or span_start >= hi:
            continue
        if span_start > cursor:
            pieces.append(text[cursor:span_start])
        cursor = max(cursor, span_end)
    if cursor < hi:
        pieces.append(text[cursor:hi])
    return "".join(pieces)


def digest_markdown(
    document: Document,
    markdown: str,
    assets_dir: Path,
    captioner: ImageCaptioner,
    concurrency: int = DEFAULT_CONCURRENCY,
    fallback_on_error: bool = True,
) -> str:
    """
    Return ``markdown`` with every located placeholder replaced by its caption.

    With ``fallback_on_error`` a failing captioner call is replaced by the local
    fallback caption. Without it the first failure stops new work, lets in-flight
    calls finish, discards everything and raises DigestAbortedError.
    """
    if not isinstance(document, Document):
        raise DigestInputError(f"Expected a Document, got {type(document).__name__}")

    tasks = scan_digest_tasks(document, markdown, assets_dir)
    if not tasks:
        logger.info("No image placeholders to digest in document %s", document.doc_id)
        return markdown

    worker_count = max(1, min(int(concurrency), len(tasks)))
    logger.info("Digesting %d images with %d workers", len(tasks), worker_count)
    cursor = _TaskCursor(len(tasks))
    fallback = MockImageCaptioner()

    with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="image-digest") as pool:
        futures = [
            pool.submit(_run_worker, tasks, cursor, captioner, fallback, fallback_on_error)
            for _ in range(worker_count)
        ]
    for future in futures:
        future.result()

    failed = [task for task in tasks if task.error is not None]
    if failed:
        first = failed[0]
        raise DigestAbortedError(
            f"Captioning failed for asset {first.asset_id}: {first.error}",
            asset_id=first.asset_id,
            context={"doc_id": document.doc_id},
        ) from first.error

    result = apply_replacements(markdown, tasks)
    logger.info("Replaced %d image digest blocks", sum(1 for task in tasks if task.replacement is not None))
    return result


def apply_replacements(markdown: str, tasks: Iterable[DigestTask]) -> str:
    # Last region first: earlier edits would shift the offsets of later ones.
    for task in sorted(tasks, key=lambda t: t.start, reverse=True):
        if task.replacement is None:
            continue
        markdown = markdown[: task.start] + task.replacement + markdown[task.end :]
    return markdown


def _run_worker(
    tasks: Sequence[DigestTask],
    cursor: _TaskCursor,
    captioner: ImageCaptioner,
    fallback: MockImageCaptioner,
    fallback_on_error: bool,
) -> None:
    while True:
        index = cursor.claim()
        if index is None:
            return
        task = tasks[index]
        logger.debug("Captioning asset %s", task.asset_id)
        try:
            caption = _caption_task(captioner, task)
        except CaptionError as exc:
            if not fallback_on_error:
                logger.error("Caption failed for asset %s: %s", task.asset_id, exc)
                task.error = exc
                cursor.close()
                continue
            logger.warning("Caption failed for asset %s, falling back to local digest: %s", task.asset_id, exc)
            caption = coerce_caption(
                fallback.caption(image_path=task.image_path, nearby_context=task.context, asset_id=task.asset_id),
                asset_id=task.asset_id,
            )
        task.replacement = format_digest(task.asset_id, caption)
        logger.debug("Captioned asset %s", task.asset_id)


def _caption_task(captioner: ImageCaptioner, task: DigestTask) -> ImageCaption:
    try:
        raw = captioner.caption(image_path=task.image_path, nearby_context=task.context, asset_id=task.asset_id)
    except CaptionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise CaptionError(f"Captioner raised {type(exc).__name__}: {exc}", asset_id=task.asset_id) from exc
    return coerce_caption(raw, asset_id=task.asset_id)


def digest_markdown_file(
    docast_path: Path,
    markdown_path: Path,
    assets_dir: Path,
    captioner: Optional[ImageCaptioner] = None,
    settings: Optional[DigestSettings] = None,
) -> str:
    """
    Read the persisted AST and the Markdown, digest, and write the Markdown back in
    one full write. Nothing is written if any step fails.
    """
    settings = settings or load_settings()
    document = document_from_json(read_text(docast_path, "Document AST"))
    markdown = read_text(markdown_path, "Markdown")
    if captioner is None:
        captioner = build_captioner(settings)

    result = digest_markdown(
        document,
        markdown,
        assets_dir,
        captioner,
        concurrency=settings.concurrency,
        fallback_on_error=settings.fallback_on_error,
    )
    safe_write_text(Path(markdown_path), result)
    logger.info("Updated image digest blocks in %s", markdown_path)
    return result

