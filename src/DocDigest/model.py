from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, StrictBool, StrictInt

# Dataclasses below are validated through pydantic TypeAdapters (see schema.py);
# unknown keys in persisted documents are rejected. Scalar Document fields are
# Strict*: "27" is not a number and "yes" is not a flag.
STRICT = ConfigDict(extra="forbid")

# Provider block type codes
PAGE = 1
PARAGRAPH = 2
HEADING1 = 3
HEADING9 = 11
BULLET = 12
ORDERED = 13
CODE = 14
QUOTE = 15
TODO = 17
CALLOUT = 19
DIVIDER = 22
IMAGE = 27
TABLE = 31
TABLE_CELL = 32

CaptionRole = Literal["diagram", "screenshot", "chart", "photo", "whiteboard", "unknown"]


@dataclass
class TextMarks:
    __pydantic_config__ = STRICT

    bold: Optional[StrictBool] = None
    italic: Optional[StrictBool] = None
    strike: Optional[StrictBool] = None
    code: Optional[StrictBool] = None
    link: Optional[str] = None


@dataclass
class TextRun:
    __pydantic_config__ = STRICT

    text: str
    marks: Optional[TextMarks] = None


@dataclass
class ListNode:
    """One list item. ``ordered`` is the item's own marker, independent of its list."""

    __pydantic_config__ = STRICT

    id: str
    ordered: StrictBool
    text_runs: List[TextRun] = field(default_factory=list)
    children: List["ListNode"] = field(default_factory=list)


@dataclass
class Block:
    """Base class for block-level nodes."""

    __pydantic_config__ = STRICT


@dataclass
class Paragraph(Block):
    id: str
    text_runs: List[TextRun] = field(default_factory=list)
    type: Literal["paragraph"] = "paragraph"


@dataclass
class Heading(Block):
    id: str
    level: Annotated[StrictInt, Field(ge=1, le=6)]
    text_runs: List[TextRun] = field(default_factory=list)
    type: Literal["heading"] = "heading"


@dataclass
class Quote(Block):
    id: str
    text_runs: List[TextRun] = field(default_factory=list)
    type: Literal["quote"] = "quote"


@dataclass
class Callout(Block):
    id: str
    text_runs: List[TextRun] = field(default_factory=list)
    type: Literal["callout"] = "callout"


@dataclass
class CodeBlock(Block):
    id: str
    text_runs: List[TextRun] = field(default_factory=list)
    language: Optional[str] = None
    type: Literal["code"] = "code"


@dataclass
class Divider(Block):
    """Horizontal rule / thematic break."""

    id: str
    type: Literal["divider"] = "divider"


@dataclass
class ListBlock(Block):
    id: str
    ordered: StrictBool
    items: List[ListNode] = field(default_factory=list)
    type: Literal["list"] = "list"


@dataclass
class TodoBlock(Block):
    id: str
    checked: StrictBool = False
    text_runs: List[TextRun] = field(default_factory=list)
    type: Literal["todo"] = "todo"


@dataclass
class ImageBlock(Block):
    id: str
    asset_id: str
    caption_runs: List[TextRun] = field(default_factory=list)
    type: Literal["image"] = "image"


@dataclass
class TableBlock(Block):
    """Row 0 is the header. Rows need not be rectangular."""

    id: str
    rows: List[List[str]] = field(default_factory=list)
    truncated: Optional[StrictBool] = None
    omitted_rows: Optional[Annotated[StrictInt, Field(ge=0)]] = None
    type: Literal["table"] = "table"


@dataclass
class UnknownBlock(Block):
    """Unsupported provider block, kept so it is never silently dropped."""

    id: str
    raw_type: StrictInt
    type: Literal["unknown"] = "unknown"


DocBlock = Annotated[
    Union[
        Paragraph,
        Heading,
        Quote,
        Callout,
        CodeBlock,
        Divider,
        ListBlock,
        TodoBlock,
        ImageBlock,
        TableBlock,
        UnknownBlock,
    ],
    Field(discriminator="type"),
]


@dataclass
class Asset:
    __pydantic_config__ = STRICT

    id: str
    token: str
    filename: str
    source_block_id: str
    kind: Literal["image"] = "image"
    mime: Optional[str] = None


@dataclass
class DocumentSource:
    __pydantic_config__ = STRICT

    url: str
    type: Literal["feishu_doc"] = "feishu_doc"


@dataclass
class Document:
    __pydantic_config__ = STRICT

    doc_id: str
    title: str
    source: DocumentSource
    blocks: List[DocBlock] = field(default_factory=list)
    assets: Dict[str, Asset] = field(default_factory=dict)


@dataclass
class DocumentFile:
    """Persisted form: ``{"doc": {...}}``."""

    __pydantic_config__ = STRICT

    doc: Document


@dataclass
class ImageCaption:
    __pydantic_config__ = STRICT

    role: CaptionRole = "unknown"
    summary: str = ""
    key_points: List[str] = field(default_factory=list)
    need_open_image_when: List[str] = field(default_factory=list)
    confidence: Annotated[float, Field(ge=0.0, le=1.0)] = 0.5
