"""
Exception hierarchy for the document digest pipeline.

    DocDigestError (base)
    ├── DocumentValidationError   Document AST does not satisfy the schema
    ├── DigestInputError          missing/unreadable inputs or settings
    ├── CaptionError              one captioning call failed (recoverable)
    │   └── CaptionSchemaError    backend output does not fit the caption shape
    └── DigestAbortedError        a caption failure with fallback disabled
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DocDigestError(Exception):
    """Base exception; ``context`` carries the offending identifiers."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class DocumentValidationError(DocDigestError, ValueError):
    pass


class DigestInputError(DocDigestError):
    pass


class CaptionError(DocDigestError):
    def __init__(self, message: str, asset_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        ctx = dict(context or {})
        if asset_id is not None:
            ctx.setdefault("asset_id", asset_id)
        super().__init__(message, ctx)
        self.asset_id = asset_id


class CaptionSchemaError(CaptionError):
    pass


class DigestAbortedError(DocDigestError):
    def __init__(self, message: str, asset_id: str, context: Optional[Dict[str, Any]] = None):
        ctx = dict(context or {})
        ctx.setdefault("asset_id", asset_id)
        super().__init__(message, ctx)
        self.asset_id = asset_id
