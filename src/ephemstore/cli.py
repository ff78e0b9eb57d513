"""ephemstore CLI - client, key tooling and server runner.

Usage:
    ephemstore [--server URL] [--key PATH] upload <file> [--ttl DURATION] [--sign-form]
    ephemstore [--server URL] download <id> [-o OUTPUT]
    ephemstore [--server URL] metadata <id>
    ephemstore [--server URL] [--key PATH] delete <id>
    ephemstore [--server URL] health
    ephemstore keygen --out-dir DIR [--name NAME] [--bits N]
    ephemstore sign --key PATH <METHOD> <PATH> [--timestamp RFC3339]
    ephemstore serve [--host HOST] [--port PORT]

Examples:
    ephemstore --key keys/signing_private.pem upload document.pdf --ttl 2h
    ephemstore download a1b2c3d4e5f6a1b2c3d4e5f6a1b2c3d4 -o document.pdf

Exit codes:
    0: Success
    1: Request rejected by the server, or local failure
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from ephemstore.auth.canonical import canonical_request_string, sign_request
from ephemstore.auth.errors import AuthenticationError
from ephemstore.auth.keys import DEFAULT_KEY_SIZE, generate_keypair, load_private_key, save_keypair
from ephemstore.client import (
    DEFAULT_SERVER_URL,
    EPHEMSTORE_PRIVATE_KEY_PATH_ENV,
    EPHEMSTORE_SERVER_URL_ENV,
    ClientError,
    EphemstoreClient,
)
from ephemstore.config import Settings

logger = logging.getLogger(__name__)


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _make_client(args: argparse.Namespace, *, signed: bool = False) -> EphemstoreClient:
    """Build a client from CLI args; loads the private key when signing is needed."""
    private_key = None
    if signed:
        key_path = args.key or os.environ.get(EPHEMSTORE_PRIVATE_KEY_PATH_ENV)
        if not key_path:
            raise ValueError(f"--key or {EPHEMSTORE_PRIVATE_KEY_PATH_ENV} is required")
        private_key = load_private_key(Path(key_path))

    return EphemstoreClient(
        args.server,
        private_key=private_key,
        sign_form_fields=getattr(args, "sign_form", False),
    )


def cmd_upload(args: argparse.Namespace) -> int:
    with _make_client(args, signed=True) as client:
        record = client.upload(args.file, ttl=args.ttl)
    _output_json(record)
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    with _make_client(args) as client:
        obj = client.download(args.id)

    if args.output:
        output = Path(args.output)
    else:
        # Server-supplied names never choose the directory.
        base_name = Path(obj.name).name
        output = Path(base_name if base_name not in ("", ".", "..") else args.id)
    output.write_bytes(obj.content)
    print(f"Saved {len(obj.content)} bytes to {output} (expires {obj.expires_at})")
    return 0


def cmd_metadata(args: argparse.Namespace) -> int:
    with _make_client(args) as client:
        _output_json(client.metadata(args.id))
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    with _make_client(args, signed=True) as client:
        _output_json(client.delete(args.id))
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    with _make_client(args) as client:
        _output_json(client.health())
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    private_path, public_path = save_keypair(
        generate_keypair(args.bits), Path(args.out_dir), name=args.name
    )
    _output_json({"private_key": str(private_path), "public_key": str(public_path)})
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Print the headers for a signed request (for use with curl and similar)."""
    key_path = args.key or os.environ.get(EPHEMSTORE_PRIVATE_KEY_PATH_ENV)
    if not key_path:
        return _error(f"--key or {EPHEMSTORE_PRIVATE_KEY_PATH_ENV} is required")

    signed = sign_request(
        args.method,
        args.path,
        load_private_key(Path(key_path)),
        timestamp=args.timestamp,
    )
    _output_json(
        {
            "canonical": canonical_request_string(args.method, args.path, signed.timestamp),
            "headers": signed.headers,
        }
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from ephemstore.api.main import create_app

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app(settings)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


COMMAND_DISPATCH: dict[str, Callable[[argparse.Namespace], int]] = {
    "upload": cmd_upload,
    "download": cmd_download,
    "metadata": cmd_metadata,
    "delete": cmd_delete,
    "health": cmd_health,
    "keygen": cmd_keygen,
    "sign": cmd_sign,
    "serve": cmd_serve,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ephemstore",
        description="ephemstore - ephemeral object store client and server",
    )
    parser.add_argument(
        "--server",
        default=os.environ.get(EPHEMSTORE_SERVER_URL_ENV, DEFAULT_SERVER_URL),
        metavar="URL",
        help=f"Server base URL (default: ${EPHEMSTORE_SERVER_URL_ENV} or {DEFAULT_SERVER_URL})",
    )
    parser.add_argument(
        "--key",
        default=None,
        metavar="PATH",
        help=f"PEM private key for signed requests (default: ${EPHEMSTORE_PRIVATE_KEY_PATH_ENV})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    upload_parser = subparsers.add_parser("upload", help="Upload a file (signed)")
    upload_parser.add_argument("file", metavar="FILE", help="Path of the file to upload")
    upload_parser.add_argument(
        "--ttl", default=None, metavar="DURATION", help="Lifetime, e.g. 30m or 2h"
    )
    upload_parser.add_argument(
        "--sign-form",
        action="store_true",
        default=False,
        help="Include form fields in the signature (server must enable it too)",
    )

    download_parser = subparsers.add_parser("download", help="Download a file")
    download_parser.add_argument("id", metavar="ID", help="Object id")
    download_parser.add_argument(
        "-o", "--output", default=None, metavar="PATH", help="Output path (default: file name)"
    )

    metadata_parser = subparsers.add_parser("metadata", help="Show file metadata")
    metadata_parser.add_argument("id", metavar="ID", help="Object id")

    delete_parser = subparsers.add_parser("delete", help="Delete a file (signed)")
    delete_parser.add_argument("id", metavar="ID", help="Object id")

    subparsers.add_parser("health", help="Check server health")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an RSA signing keypair")
    keygen_parser.add_argument("--out-dir", required=True, metavar="DIR", help="Output directory")
    keygen_parser.add_argument("--name", default="signing", help="Base name of the key files")
    keygen_parser.add_argument(
        "--bits", type=int, default=DEFAULT_KEY_SIZE, help="RSA modulus size"
    )

    sign_parser = subparsers.add_parser("sign", help="Print signature headers for a request")
    sign_parser.add_argument(
        "--key",
        default=argparse.SUPPRESS,
        metavar="PATH",
        help="PEM private key (same as the global --key)",
    )
    sign_parser.add_argument("method", metavar="METHOD", help="HTTP method")
    sign_parser.add_argument("path", metavar="PATH", help="Request path, e.g. /api/v1/upload")
    sign_parser.add_argument(
        "--timestamp", default=None, metavar="RFC3339", help="Timestamp to sign (default: now)"
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument(
        "--host", default=None, help="Bind address (default: $EPHEMSTORE_HOST)"
    )
    serve_parser.add_argument(
        "--port", type=int, default=None, help="Bind port (default: $EPHEMSTORE_PORT)"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return COMMAND_DISPATCH[args.command](args)
    except ClientError as e:
        return _error(f"server returned {e.status_code} {e.code or ''}: {e.message}".strip())
    except httpx.HTTPError as e:
        return _error(f"request failed: {e}")
    except AuthenticationError as e:
        return _error(e.message)
    except (OSError, ValueError) as e:
        return _error(str(e))


if __name__ == "__main__":
    sys.exit(main())
