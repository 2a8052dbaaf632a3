"""Preview copies of a Document with long tables cut down, plus CSV export of full tables."""

from __future__ import annotations

import copy
import csv
import io
import logging
from typing import List, Optional

from .config import DigestSettings, load_settings
from .model import Document, TableBlock

logger = logging.getLogger(__name__)


def build_preview_document(
    document: Document,
    max_data_rows: Optional[int] = None,
    settings: Optional[DigestSettings] = None,
) -> Document:
    """
    Deep copy of ``document`` where every table keeps its header plus at most
    ``max_data_rows`` data rows. Truncated tables record how many rows were dropped.
    The input document is not modified.

    Without ``max_data_rows`` the limit is ``table_preview_max_rows`` from
    ``settings`` (resolved with ``load_settings`` when not given).
    """
    if max_data_rows is None:
        max_data_rows = (settings or load_settings()).table_preview_max_rows
    max_data_rows = max(1, int(max_data_rows))
    preview = copy.deepcopy(document)
    for block in preview.blocks:
        if not isinstance(block, TableBlock):
            continue
        data_rows = len(block.rows) - 1
        if data_rows <= max_data_rows:
            continue
        omitted = data_rows - max_data_rows
        block.rows = block.rows[: max_data_rows + 1]
        block.truncated = True
        block.omitted_rows = omitted
        logger.debug("Table %s truncated, %d rows omitted", block.id, omitted)
    return preview


def table_to_csv(rows: List[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()
