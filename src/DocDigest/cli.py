from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import load_settings
from .errors import DocDigestError
from .image_digest import digest_markdown_file
from .preview import build_preview_document
from .renderer_markdown import render_document
from .schema import document_from_json
from .utils import configure_logging, read_text, safe_write_text

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docdigest",
        description="Render a document AST to Markdown and fill its image digest blocks.",
    )
    parser.add_argument("--config", type=str, help="YAML settings file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    render = commands.add_parser("render", help="Render a document AST JSON file to Markdown")
    render.add_argument("docast", type=str, help="Path to the document AST JSON")
    render.add_argument("-o", "--output", type=str, help="Output Markdown path")
    render.add_argument("--full-tables", action="store_true", help="Do not truncate long tables")

    digest = commands.add_parser("digest", help="Fill image digest blocks in a rendered Markdown file")
    digest.add_argument("docast", type=str, help="Path to the document AST JSON")
    digest.add_argument("markdown", type=str, help="Markdown file to update in place")
    digest.add_argument("--assets-dir", type=str, help="Directory holding the image files")
    digest.add_argument("--provider", choices=["openai", "mock"], help="Captioning backend")
    digest.add_argument("--concurrency", type=int, help="Number of parallel captioning calls")
    digest.add_argument("--no-fallback", action="store_true", help="Abort instead of using the local fallback")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        if args.command == "render":
            _render(args)
        else:
            _digest(args)
    except DocDigestError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def _render(args: argparse.Namespace) -> None:
    settings = load_settings(args.config)
    docast_path = Path(args.docast).expanduser()
    output_path = Path(args.output) if args.output else docast_path.with_suffix(".md")

    logger.info("Reading %s", docast_path)
    document = document_from_json(read_text(docast_path, "Document AST"))
    if not args.full_tables:
        document = build_preview_document(document, settings=settings)
    safe_write_text(output_path, render_document(document))
    logger.info("Done. Saved to %s", output_path)


def _digest(args: argparse.Namespace) -> None:
    settings = load_settings(
        args.config,
        provider=args.provider,
        concurrency=args.concurrency,
        fallback_on_error=False if args.no_fallback else None,
    )
    markdown_path = Path(args.markdown).expanduser()
    assets_dir = Path(args.assets_dir) if args.assets_dir else markdown_path.parent / "assets" / "images"
    digest_markdown_file(Path(args.docast).expanduser(), markdown_path, assets_dir, settings=settings)


if __name__ == "__main__":
    raise SystemExit(main())
