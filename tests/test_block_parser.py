import pytest

from DocDigest import block_parser
from DocDigest.model import (
    Callout,
    CodeBlock,
    Divider,
    Heading,
    ImageBlock,
    ListBlock,
    Paragraph,
    TableBlock,
    TodoBlock,
    UnknownBlock,
)


def _text(content, **style):
    element = {"text_run": {"content": content}}
    if style:
        element["text_element_style"] = style
    return {"elements": [element]}


def _page(children):
    return {"block_id": "page", "block_type": 1, "children": children}


def _normalize(blocks):
    return block_parser.normalize(blocks, doc_id="doc1", title="Title", source_url="https://example.com/docx/doc1")


def test_basic_block_types():
    blocks = [
        _page(["p1", "h1", "c1", "code1", "d1", "t1"]),
        {"block_id": "p1", "parent_id": "page", "block_type": 2, "text": _text("hello", bold=True)},
        {"block_id": "h1", "parent_id": "page", "block_type": 4, "heading2": _text("Section")},
        {"block_id": "c1", "parent_id": "page", "block_type": 19, "callout": _text("note")},
        {
            "block_id": "code1",
            "parent_id": "page",
            "block_type": 14,
            "code": {"elements": [{"text_run": {"content": "print(1)"}}], "language": "python"},
        },
        {"block_id": "d1", "parent_id": "page", "block_type": 22},
        {"block_id": "t1", "parent_id": "page", "block_type": 17, "todo": {**_text("done"), "style": {"done": True}}},
    ]
    doc = _normalize(blocks)
    paragraph, heading, callout, code, divider, todo = doc.blocks
    assert isinstance(paragraph, Paragraph)
    assert paragraph.text_runs[0].text == "hello"
    assert paragraph.text_runs[0].marks.bold is True
    assert paragraph.text_runs[0].marks.italic is None
    assert isinstance(heading, Heading) and heading.level == 2
    assert isinstance(callout, Callout)
    assert isinstance(code, CodeBlock) and code.language == "python"
    assert isinstance(divider, Divider)
    assert isinstance(todo, TodoBlock) and todo.checked is True
    assert doc.title == "Title"
    assert doc.source.url == "https://example.com/docx/doc1"


def test_deep_headings_collapse_to_level_six():
    blocks = [
        _page(["h7", "h9"]),
        {"block_id": "h7", "block_type": 9, "heading7": _text("seven")},
        {"block_id": "h9", "block_type": 11, "heading9": _text("nine")},
    ]
    doc = _normalize(blocks)
    assert [block.level for block in doc.blocks] == [6, 6]


def test_unknown_block_type_is_preserved():
    blocks = [_page(["x"]), {"block_id": "x", "block_type": 999}]
    doc = _normalize(blocks)
    assert doc.blocks == [UnknownBlock(id="x", raw_type=999)]


def test_dangling_and_repeated_root_references_are_skipped():
    blocks = [
        _page(["p1", "ghost", "p1"]),
        {"block_id": "p1", "block_type": 2, "text": _text("only once")},
    ]
    doc = _normalize(blocks)
    assert [block.id for block in doc.blocks] == ["p1"]


def test_nested_list_items_belong_to_their_parent():
    blocks = [
        _page(["b1", "b2", "o1"]),
        {"block_id": "b1", "parent_id": "page", "block_type": 12, "bullet": _text("parent"), "children": ["o1"]},
        {"block_id": "o1", "parent_id": "b1", "block_type": 13, "ordered": _text("child ordered")},
        {"block_id": "b2", "parent_id": "page", "block_type": 12, "bullet": _text("sibling")},
    ]
    doc = _normalize(blocks)
    assert [block.id for block in doc.blocks] == ["b1", "b2"]
    first = doc.blocks[0]
    assert isinstance(first, ListBlock)
    assert first.ordered is False
    child = first.items[0].children[0]
    assert child.id == "o1"
    assert child.ordered is True
    assert child.text_runs[0].text == "child ordered"


def test_self_referencing_list_terminates():
    blocks = [
        _page(["b1"]),
        {"block_id": "b1", "parent_id": "page", "block_type": 12, "bullet": _text("loop"), "children": ["b1"]},
    ]
    doc = _normalize(blocks)
    root = doc.blocks[0].items[0]
    assert root.id == "b1"
    assert len(root.children) == 1
    assert root.children[0].children == []


def test_mutual_list_cycle_terminates():
    blocks = [
        _page(["a"]),
        {"block_id": "a", "parent_id": "page", "block_type": 12, "bullet": _text("a"), "children": ["b"]},
        {"block_id": "b", "parent_id": "a", "block_type": 12, "bullet": _text("b"), "children": ["a"]},
    ]
    doc = _normalize(blocks)
    node = doc.blocks[0].items[0]
    assert node.children[0].id == "b"
    assert node.children[0].children[0].id == "a"
    assert node.children[0].children[0].children == []


def test_list_depth_is_bounded():
    count = block_parser.MAX_LIST_DEPTH + 10
    blocks = [_page(["n0"])]
    for i in range(count):
        blocks.append(
            {
                "block_id": f"n{i}",
                "parent_id": "page" if i == 0 else f"n{i - 1}",
                "block_type": 12,
                "bullet": _text(str(i)),
                "children": [f"n{i + 1}"] if i + 1 < count else [],
            }
        )
    doc = _normalize(blocks)
    depth = 0
    node = doc.blocks[0].items[0]
    while node.children:
        node = node.children[0]
        depth += 1
    assert depth == block_parser.MAX_LIST_DEPTH


def test_table_with_row_grid():
    blocks = [
        _page(["tbl"]),
        {"block_id": "tbl", "block_type": 31, "table": {"cells": [["c1", "c2"], ["c3", "c4"]]}},
        {"block_id": "c1", "block_type": 32, "children": ["c1t"]},
        {"block_id": "c1t", "block_type": 2, "text": _text("Name")},
        {"block_id": "c2", "block_type": 32, "children": ["c2a", "c2b"]},
        {"block_id": "c2a", "block_type": 2, "text": _text("Value")},
        {"block_id": "c2b", "block_type": 2, "text": _text("(units)")},
        {"block_id": "c3", "block_type": 32, "children": ["c3t"]},
        {"block_id": "c3t", "block_type": 2, "text": _text("a")},
        {"block_id": "c4", "block_type": 32, "children": []},
    ]
    doc = _normalize(blocks)
    table = doc.blocks[0]
    assert isinstance(table, TableBlock)
    assert table.rows == [["Name", "Value (units)"], ["a", ""]]


def test_table_with_flat_cells_and_column_size():
    blocks = [
        _page(["tbl"]),
        {
            "block_id": "tbl",
            "block_type": 31,
            "table": {"cells": ["c1", "c2", "c3", "c4"], "property": {"column_size": 2, "row_size": 2}},
        },
    ]
    for i in range(1, 5):
        blocks.append({"block_id": f"c{i}", "block_type": 32, "children": [f"c{i}t"]})
        blocks.append({"block_id": f"c{i}t", "block_type": 2, "text": _text(f"v{i}")})
    doc = _normalize(blocks)
    assert doc.blocks[0].rows == [["v1", "v2"], ["v3", "v4"]]


def test_table_from_row_children():
    blocks = [
        _page(["tbl"]),
        {"block_id": "tbl", "block_type": 31, "table": {}, "children": ["r1", "r2"]},
        {"block_id": "r1", "children": ["x1"]},
        {"block_id": "r2", "children": ["x2"]},
        {"block_id": "x1", "block_type": 32, "table_cell": _text("head")},
        {"block_id": "x2", "block_type": 32, "table_cell": _text("body")},
    ]
    doc = _normalize(blocks)
    assert doc.blocks[0].rows == [["head"], ["body"]]


def test_images_register_assets_once():
    blocks = [
        _page(["i1", "i2", "i3"]),
        {"block_id": "i1", "block_type": 27, "image": {"token": "tok/1", "alt": "diagram"}},
        {"block_id": "i2", "block_type": 27, "image": {"file_token": "tok/1"}},
        {"block_id": "i3", "block_type": 27, "image": {}},
    ]
    doc = _normalize(blocks)
    first, second, third = doc.blocks
    assert isinstance(first, ImageBlock) and first.asset_id == "tok/1"
    assert first.caption_runs[0].text == "diagram"
    assert isinstance(second, ImageBlock) and second.asset_id == "tok/1"
    assert third == UnknownBlock(id="i3", raw_type=27)
    assert list(doc.assets) == ["tok/1"]
    asset = doc.assets["tok/1"]
    assert asset.filename == "assets/images/tok_1.bin"
    assert asset.source_block_id == "i1"


def test_text_element_variants_and_links():
    block = {
        "block_id": "p",
        "block_type": 2,
        "text": {
            "elements": [
                {"equation": {"content": "E=mc^2"}},
                {"mention_doc": {"title": "Spec doc"}},
                {"person": {"name": "Sam"}},
                {
                    "text_run": {
                        "content": "site",
                        "text_element_style": {"link": {"url": "https%3A%2F%2Fexample.com%2Fa%20b"}},
                    }
                },
            ]
        },
    }
    runs = block_parser.text_runs_from_block(block)
    assert [run.text for run in runs] == ["E=mc^2", "Spec doc", "Sam", "site"]
    assert runs[0].marks is None
    assert runs[3].marks.link == "https://example.com/a b"


def test_collect_plain_text_survives_cycles():
    block_by_id = {
        "a": {"block_id": "a", "block_type": 2, "text": _text("one"), "children": ["b"]},
        "b": {"block_id": "b", "block_type": 2, "text": _text("two"), "children": ["a"]},
    }
    assert block_parser.collect_plain_text("a", block_by_id) == "one two"


def test_normalize_is_deterministic():
    blocks = [
        _page(["p1", "b1"]),
        {"block_id": "p1", "block_type": 2, "text": _text("x")},
        {"block_id": "b1", "parent_id": "page", "block_type": 13, "ordered": _text("y")},
    ]
    assert _normalize(blocks) == _normalize(blocks)


def test_deep_descendant_chain_in_table_cell():
    count = 3000
    blocks = [
        _page(["tbl"]),
        {"block_id": "tbl", "block_type": 31, "table": {"cells": [["c0"]]}},
    ]
    for i in range(count):
        blocks.append(
            {
                "block_id": f"c{i}",
                "block_type": 2,
                "text": _text(f"t{i}"),
                "children": [f"c{i + 1}"] if i + 1 < count else [],
            }
        )
    doc = _normalize(blocks)
    cell = doc.blocks[0].rows[0][0]
    assert cell.startswith("t0 t1 t2 ")
    assert cell.endswith(f"t{count - 1}")


def test_plain_text_keeps_document_order():
    block_by_id = {
        "cell": {"block_id": "cell", "block_type": 32, "children": ["a", "b"]},
        "a": {"block_id": "a", "block_type": 2, "text": _text("first"), "children": ["a1"]},
        "a1": {"block_id": "a1", "block_type": 2, "text": _text("nested")},
        "b": {"block_id": "b", "block_type": 2, "text": _text("second")},
    }
    assert block_parser.collect_plain_text("cell", block_by_id) == "first nested second"


@pytest.mark.parametrize(
    "block",
    [
        {"block_id": "p", "block_type": 2, "text": {"elements": 5}},
        {"block_id": "p", "block_type": 2, "text": {"elements": "abc"}},
        {"block_id": "p", "block_type": 2, "text": {"elements": [5, None, {"text_run": "oops"}]}},
        {"block_id": "p", "block_type": 2, "text": ["not", "a", "mapping"]},
        {"block_id": "p", "block_type": 2, "text": _text("x"), "children": 7},
        {"block_id": "p", "block_type": 17, "todo": {"style": "done"}},
        {"block_id": "p", "block_type": 14, "code": "print(1)"},
        {"block_id": "p", "block_type": 27, "image": "token"},
        {"block_id": "p", "block_type": 31, "table": {"cells": 12, "property": "wide"}, "children": "r1"},
        {"block_id": "p", "block_type": 12, "bullet": {"elements": {"a": 1}}, "children": None},
    ],
)
def test_malformed_wire_shapes_degrade(block):
    doc = _normalize([_page(["p"]), block])
    assert [b.id for b in doc.blocks] == ["p"]


@pytest.mark.parametrize("block_type", ["heading", None, [2], {"x": 1}])
def test_non_numeric_block_type_becomes_unknown(block_type):
    doc = _normalize([_page(["x"]), {"block_id": "x", "block_type": block_type, "text": _text("y")}])
    assert doc.blocks == [UnknownBlock(id="x", raw_type=0)]


def test_non_mapping_raw_blocks_are_ignored():
    doc = _normalize([_page(["p"]), "garbage", 42, None, {"block_id": "p", "block_type": 2, "text": _text("ok")}])
    assert doc.blocks[0].text_runs[0].text == "ok"
