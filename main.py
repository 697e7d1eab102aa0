#!/usr/bin/env python3
# main.py
"""
Homework PDF CLI.
- images-to-pdf: one page per photo (JPG/PNG/...), pages sized to the photo, bounded by A4
- merge: pages of the first PDF followed by pages of the second
- build: photos first, then the homework template; with no photos the template is copied unchanged

Notes:
- Photos wider than 1500 px are downsampled and re-encoded as JPEG (quality 85).
- Nothing is written when the build fails.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config import ConfigError, load_config
from pdf_utils import (
    PdfAssemblyError,
    build_homework_pdf,
    convert_images_to_pdf,
    count_pages,
    merge_pdfs,
)


# --------------------------- Helpers ---------------------------

def _missing(paths: List[Path]) -> List[Path]:
    return [p for p in paths if not p.is_file()]


def _write_output(out: Path, data: bytes) -> None:
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)


def _print_summary(title: str, out: Path, pages: int, **extra: object) -> None:
    print(f"\n=== {title} ===")
    for key, value in extra.items():
        print(f" {key.replace('_', ' ').capitalize():<16}: {value}")
    print(f" {'Pages':<16}: {pages}")
    print(f" {'Output':<16}: {out}")
    print()


# --------------------------- Commands ---------------------------

def cmd_images_to_pdf(args: argparse.Namespace) -> int:
    images = [Path(p).expanduser() for p in args.images]
    missing = _missing(images)
    if missing:
        for p in missing:
            print(f"[ERROR] Image not found: {p}", file=sys.stderr)
        return 2

    pdf = convert_images_to_pdf([p.read_bytes() for p in images])
    pages = count_pages(pdf)
    out = Path(args.out).expanduser()
    _write_output(out, pdf)
    _print_summary("Images converted", out, pages, photos=len(images))
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    first, second = Path(args.first).expanduser(), Path(args.second).expanduser()
    missing = _missing([first, second])
    if missing:
        for p in missing:
            print(f"[ERROR] PDF not found: {p}", file=sys.stderr)
        return 2

    pdf = merge_pdfs(first.read_bytes(), second.read_bytes())
    pages = count_pages(pdf)
    out = Path(args.out).expanduser()
    _write_output(out, pdf)
    _print_summary("PDFs merged", out, pages, first=first.name, second=second.name)
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    template = Path(args.template).expanduser()
    images = [Path(p).expanduser() for p in args.images]
    missing = _missing([template, *images])
    if missing:
        for p in missing:
            print(f"[ERROR] File not found: {p}", file=sys.stderr)
        return 2

    if not images:
        print("[INFO] No photos given; the template is copied unchanged.", file=sys.stderr)

    build = build_homework_pdf(template.read_bytes(), [p.read_bytes() for p in images])
    # a passthrough build never parsed the template
    pages = build.page_count if build.page_count is not None else count_pages(build.pdf)
    out = Path(args.out).expanduser()
    _write_output(out, build.pdf)
    _print_summary(
        "Homework PDF built",
        out,
        pages,
        template=template.name,
        photos=len(images),
        result=build.kind,
        header=args.header or "-",
    )
    return 0


# --------------------------- CLI ---------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mathify-pdf",
        description="Assemble homework submission PDFs from photographed pages and a template.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_images = sub.add_parser("images-to-pdf", help="Convert photos into a PDF, one page per photo.")
    p_images.add_argument("images", nargs="+", help="Photo files, in page order.")
    p_images.add_argument("--out", required=True, help="Output PDF path.")
    p_images.set_defaults(func=cmd_images_to_pdf)

    p_merge = sub.add_parser("merge", help="Concatenate two PDFs.")
    p_merge.add_argument("first", help="PDF whose pages come first.")
    p_merge.add_argument("second", help="PDF whose pages follow.")
    p_merge.add_argument("--out", required=True, help="Output PDF path.")
    p_merge.set_defaults(func=cmd_merge)

    p_build = sub.add_parser("build", help="Prepend photographed pages to a homework template.")
    p_build.add_argument("images", nargs="*", help="Photo files, in page order (may be empty).")
    p_build.add_argument("--template", required=True, help="Homework template PDF.")
    p_build.add_argument(
        "--header",
        default=None,
        help="Submission label (recorded in the summary, not rendered).",
    )
    p_build.add_argument("--out", required=True, help="Output PDF path.")
    p_build.set_defaults(func=cmd_build)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = load_config()
    except ConfigError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    logging.basicConfig(level=cfg.log_level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except PdfAssemblyError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
