"""boxstore CLI.

Usage:
    python -m boxstore.cli serve [--host HOST] [--port PORT] [--log-level LEVEL]
    python -m boxstore.cli checksum PATH [--algorithm NAME] [--expected HEX]

Exit codes:
    0: Success / checksum matches
    1: Checksum mismatch / Internal error
    2: Unsupported algorithm or unreadable file
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from boxstore.storage.checksum import SUPPORTED_ALGORITHMS, compute_checksum

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
LOG_LEVELS = ("debug", "info", "warning", "error")


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the API server under uvicorn."""
    import uvicorn

    from boxstore.api.main import create_app

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)
    return 0


def cmd_checksum(args: argparse.Namespace) -> int:
    """Print or verify the digest of a file.

    Exit codes:
        0: digest printed, or matches --expected
        1: digest does not match --expected
        2: unsupported algorithm or unreadable file
    """
    algorithm = args.algorithm.strip().lower().replace("-", "")
    if algorithm not in SUPPORTED_ALGORITHMS:
        _output_json(
            {
                "error": "UNSUPPORTED_ALGORITHM",
                "message": f"Unsupported algorithm '{args.algorithm}'. "
                f"Valid options: {sorted(SUPPORTED_ALGORITHMS)}",
            }
        )
        return 2

    try:
        digest = compute_checksum(args.path, algorithm)
    except OSError as e:
        _output_json({"error": "READ_ERROR", "message": f"Cannot read {args.path}: {e}"})
        return 2

    result: dict[str, Any] = {"algorithm": algorithm, "checksum": digest, "path": args.path}
    if args.expected is None:
        _output_json(result)
        return 0

    matches = digest == args.expected.strip().lower()
    result["expected"] = args.expected.strip().lower()
    result["match"] = matches
    _output_json(result)
    return 0 if matches else 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="boxstore",
        description="boxstore - Vagrant box artifact storage",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve_parser.add_argument("--host", default=DEFAULT_HOST, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Bind port")
    serve_parser.add_argument(
        "--log-level",
        default="info",
        choices=LOG_LEVELS,
        help="Logging level",
    )

    checksum_parser = subparsers.add_parser(
        "checksum",
        help="Compute or verify a file digest",
    )
    checksum_parser.add_argument("path", metavar="PATH", help="File to hash")
    checksum_parser.add_argument(
        "--algorithm",
        default="sha256",
        help="Digest algorithm (md5, sha1, sha256, sha384, sha512)",
    )
    checksum_parser.add_argument(
        "--expected",
        metavar="HEX",
        default=None,
        help="Expected digest; exit 1 if it does not match",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        if args.command == "serve":
            return cmd_serve(args)

        if args.command == "checksum":
            return cmd_checksum(args)

        return 0

    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        _output_json({"error": "INTERNAL_ERROR", "message": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
