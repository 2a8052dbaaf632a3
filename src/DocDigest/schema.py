from __future__ import annotations

import json
from dataclasses import fields
from typing import Any, Dict, Mapping

from pydantic import TypeAdapter, ValidationError

from .errors import CaptionSchemaError, DocumentValidationError
from .model import Document, DocumentFile, ImageCaption

_DOCUMENT = TypeAdapter(Document)
_DOCUMENT_FILE = TypeAdapter(DocumentFile)
_CAPTION = TypeAdapter(ImageCaption)


def document_to_dict(document: Document) -> Dict[str, Any]:
    """Persisted form ``{"doc": {...}}`` with unset optional fields omitted."""
    return {"doc": _DOCUMENT.dump_python(document, mode="json", exclude_none=True)}


def document_to_json(document: Document) -> str:
    return json.dumps(document_to_dict(document), ensure_ascii=False, indent=2) + "\n"


def document_from_dict(data: Any) -> Document:
    try:
        wrapped = _DOCUMENT_FILE.validate_python(data)
    except ValidationError as exc:
        raise DocumentValidationError(
            f"Document AST failed schema validation: {exc.error_count()} error(s)\n{exc}",
            {"doc_id": _peek_doc_id(data)},
        ) from exc
    _check_invariants(wrapped.doc)
    return wrapped.doc


def document_from_json(text: str) -> Document:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentValidationError(f"Document AST is not valid JSON: {exc}") from exc
    return document_from_dict(data)


def validate_document(document: Document) -> Document:
    """Round-trip the document through the persisted schema and return the validated copy."""
    try:
        data = _DOCUMENT.dump_python(document, mode="json", exclude_none=True, warnings=False)
    except Exception as exc:  # noqa: BLE001
        raise DocumentValidationError(
            f"Document {getattr(document, 'doc_id', '?')} cannot be serialized: {exc}",
            {"doc_id": getattr(document, "doc_id", None)},
        ) from exc
    return document_from_dict({"doc": data})


def coerce_caption(raw: Any, asset_id: str | None = None) -> ImageCaption:
    """Validate captioner output (an ImageCaption or a mapping) into an ImageCaption."""
    if isinstance(raw, ImageCaption):
        raw = _CAPTION.dump_python(raw, warnings=False)
    if not isinstance(raw, Mapping):
        raise CaptionSchemaError(f"Caption output must be a mapping, got {type(raw).__name__}", asset_id=asset_id)
    known = {f.name for f in fields(ImageCaption)}
    try:
        return _CAPTION.validate_python({k: v for k, v in raw.items() if k in known})
    except ValidationError as exc:
        raise CaptionSchemaError(f"Caption output failed validation: {exc}", asset_id=asset_id) from exc


def _check_invariants(document: Document) -> None:
    seen = set()
    for block in document.blocks:
        if block.id in seen:
            raise DocumentValidationError(
                f"Duplicate block id {block.id} in document {document.doc_id}",
                {"doc_id": document.doc_id, "block_id": block.id},
            )
        seen.add(block.id)
    for key, asset in document.assets.items():
        if key != asset.id:
            raise DocumentValidationError(
                f"Asset registered under {key} but carries id {asset.id}",
                {"doc_id": document.doc_id, "asset_id": key},
            )


def _peek_doc_id(data: Any) -> Any:
    if isinstance(data, Mapping):
        doc = data.get("doc")
        if isinstance(doc, Mapping):
            return doc.get("doc_id")
    return None
