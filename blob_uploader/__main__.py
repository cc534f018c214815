"""Command-line entry point: upload one file and print the container listing."""
import argparse
from dataclasses import replace
import logging
import sys

from .controller import UploadOrchestrator
from .credentials import resolve_s3_secret
from .models import SourceFile, UploadStatus
from .settings import TOKEN_AUTHORITIES, SettingsStorage, apply_environment
from .ui_utils import build_tiles, format_size, format_status, load_package_info

SUCCEEDED = (UploadStatus.TRANSFER_SUCCEEDED, UploadStatus.LISTING_REFRESHED)


def build_parser() -> argparse.ArgumentParser:
    info = load_package_info()
    parser = argparse.ArgumentParser(prog="pyblobup", description=info.summary)
    parser.add_argument("file", help="local file to upload")
    parser.add_argument("--server-side", action="store_true", help="send the file through the proxy server")
    parser.add_argument("--container", help="target container name")
    parser.add_argument("--api-server", help="base URL of the token and listing API")
    parser.add_argument("--proxy-server", help="base URL of the upload proxy")
    parser.add_argument("--ttl", type=int, help="token lifetime in minutes")
    parser.add_argument("--authority", choices=TOKEN_AUTHORITIES, help="where access tokens come from")
    parser.add_argument("--settings", help="path to a settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {info.version or 'dev'}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = SettingsStorage(args.settings)
    settings = apply_environment(storage.load())
    overrides = {
        "container_name": args.container,
        "api_server": args.api_server,
        "proxy_server": args.proxy_server,
        "token_ttl_minutes": args.ttl,
        "token_authority": args.authority,
    }
    settings = replace(settings, **{key: value for key, value in overrides.items() if value})

    secret = resolve_s3_secret(settings, storage) if settings.token_authority == "s3" else ""
    orchestrator = UploadOrchestrator.from_settings(settings, s3_secret_key=secret)

    try:
        source = SourceFile.from_path(args.file)
    except OSError as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        return 1
    print(f"Uploading {source.name} ({format_size(source.size)}) to '{settings.container_name}'")

    orchestrator.select_file(source)
    attempt = orchestrator.request_token()
    if attempt.status is not UploadStatus.TOKEN_READY:
        print(format_status(attempt, include_detail=args.verbose), file=sys.stderr)
        return 1

    if args.server_side:
        attempt = orchestrator.upload_via_server()
    else:
        attempt = orchestrator.upload_direct()
    succeeded = attempt.status in SUCCEEDED
    print(format_status(attempt, include_detail=args.verbose), file=sys.stdout if succeeded else sys.stderr)

    if orchestrator.listing is not None:
        for tile in build_tiles(orchestrator.listing.entries):
            print(f"[{tile.kind}] {tile.address}")
    return 0 if succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
