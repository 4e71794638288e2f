from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .host import SiteBuild
from .plugin import optimize_images


def _parse_widths(text: str) -> List[int]:
    """Accept "320,640,1280"."""
    try:
        widths = sorted({int(x.strip()) for x in text.split(",") if x.strip()})
    except ValueError:
        raise argparse.ArgumentTypeError("invalid widths, example: 320,640,1280")
    return [w for w in widths if w > 0]


def _parse_list(text: str) -> List[str]:
    return [x.strip() for x in text.split(",") if x.strip()]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="respimg",
        description="Responsive images for a built static site",
    )
    sub = p.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", help="Generate variants and rewrite HTML in a built site")
    opt.add_argument("site", help="Built site directory (read and written in place)")
    opt.add_argument("--source", default=None, help="Site source directory, scanned for background images")
    opt.add_argument("--config", default=None, help="JSON file with plugin options")

    # Variants
    opt.add_argument("--widths", type=_parse_widths, default=None, help="Widths, e.g. 320,640,1280")
    opt.add_argument("--formats", type=_parse_list, default=None, help="Formats, e.g. avif,webp,original")
    opt.add_argument("--allow-upscale", action="store_true", help="Generate widths larger than the source")

    # Output
    opt.add_argument("--output-dir", default=None, help="Output folder inside the site")
    opt.add_argument("--metadata", action="store_true", help="Write responsive-images-manifest.json")

    # Markup
    opt.add_argument("--progressive", action="store_true", help="Progressive loading markup")
    opt.add_argument("--no-lazy", action="store_true", help='Do not add loading="lazy"')
    opt.add_argument("--no-unused", action="store_true", help="Skip images no document references")

    opt.add_argument("--concurrency", type=int, default=None, help="Images processed in parallel")
    opt.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    return p


def _options_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if args.config:
        with Path(args.config).open("r", encoding="utf-8") as f:
            options.update(json.load(f))

    if args.widths is not None:
        options["widths"] = args.widths
    if args.formats is not None:
        options["formats"] = args.formats
    if args.allow_upscale:
        options["skip_larger"] = False
    if args.output_dir is not None:
        options["output_dir"] = args.output_dir
    if args.metadata:
        options["generate_metadata"] = True
    if args.progressive:
        options["is_progressive"] = True
    if args.no_lazy:
        options["lazy"] = False
    if args.no_unused:
        options["process_unused_images"] = False
    if args.concurrency is not None:
        options["concurrency"] = args.concurrency
    return options


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "optimize":
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

        site = Path(args.site)
        build = SiteBuild(site, Path(args.source) if args.source else None)
        files = build.load_files()
        before = {k: v.contents for k, v in files.items()}

        plugin = optimize_images(_options_from_args(args))
        result = plugin(files, build)

        changed = [k for k, v in files.items() if before.get(k) != v.contents]
        build.write_files(files, only=changed)

        # Print summary
        print("\n=== Responsive Images ===")
        print("Documents  :", result.documents)
        print("Transcoded :", result.images_transcoded)
        print("Cache hits :", result.cache_hits)
        print("Background :", result.background_images)
        print("Written    :", len(changed))

        if result.failures:
            print("\nFailures:")
            for f in result.failures:
                print(f"  {f.path}: {f.reason}")

        if not result.ok:
            print("\nBuild failed:", result.error)
            return 1
        return 0

    parser.print_help()
    return 2
