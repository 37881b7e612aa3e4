"""Module executed when running ``python -m cinetaste``."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

import uvicorn

from app.catalog import CatalogLoadError, convert_json_catalog
from app.config import settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cinetaste")
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("serve", help="run the HTTP API (default)")
    convert = subcommands.add_parser(
        "convert-catalog",
        help="split a JSON model into metadata and a float32 vector blob",
    )
    convert.add_argument("source", type=Path)
    convert.add_argument("--out-dir", type=Path, default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Start the uvicorn server or run a maintenance command."""

    args = build_parser().parse_args(argv)
    if args.command == "convert-catalog":
        logging.basicConfig(level=settings.log_level)
        metadata_path = Path(settings.catalog_metadata_path)
        vectors_path = Path(settings.catalog_vectors_path)
        if args.out_dir is not None:
            args.out_dir.mkdir(parents=True, exist_ok=True)
            metadata_path = args.out_dir / metadata_path.name
            vectors_path = args.out_dir / vectors_path.name
        try:
            convert_json_catalog(args.source, metadata_path, vectors_path)
        except CatalogLoadError as exc:
            logging.getLogger(__name__).error("%s", exc)
            return 1
        return 0

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
    return 0


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    raise SystemExit(main())
