#!/usr/bin/env python3
# -*-coding: utf-8-*-
"""
modpatcher - command line entry point

Runs on the device next to the app being modded. ``request`` speaks the
JSON protocol used by the frontend; the other subcommands are shortcuts
for manual use.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .app.api import GetModStatusRequest, PatchRequest, handle_request, parse_request
from .app.installer import ModInstaller
from .config import load_config
from .exceptions import BaseError
from .logging_config import setup_logging
from .network.external_res import ExternalResources
from .utils.platform_tools import PlatformTools
from .version import load_version

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parses command line arguments."""
    parser = argparse.ArgumentParser(prog="modpatcher", description="Mod an installed app and manage its modloader")
    parser.add_argument("--config", help="Path to a JSON config overriding the defaults")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Minimum log level (default: INFO)",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--log-dir", help="Also write rotating log files to this directory")
    parser.add_argument("--version", action="version", version=f"modpatcher {load_version()}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    request = subparsers.add_parser("request", help="Handle one JSON request and print the JSON response")
    request.add_argument("payload", nargs="?", help="Request JSON (read from stdin when omitted)")

    subparsers.add_parser("status", help="Show whether the app is installed and modded")

    patch = subparsers.add_parser("patch", help="Mod the installed app")
    patch.add_argument("--downgrade-to", metavar="VERSION", help="Downgrade to this version before modding")

    subparsers.add_parser("install-modloader", help="Copy the modloader into the ModData directory")

    return parser.parse_args(argv)


def build_installer(config_path: Optional[str] = None) -> ModInstaller:
    config = load_config(config_path)
    return ModInstaller(config, PlatformTools(), ExternalResources(config.urls))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    # stdout carries the JSON response in request mode, so logs go to stderr
    setup_logging(
        log_level=args.log_level,
        log_dir=args.log_dir,
        enable_file_logging=bool(args.log_dir),
        structured_json=True if args.json_logs else None,
        stream=sys.stderr,
    )

    try:
        installer = build_installer(args.config)

        if args.command == "request":
            payload = args.payload if args.payload is not None else sys.stdin.read()
            request = parse_request(payload)
        elif args.command == "status":
            request = GetModStatusRequest()
        elif args.command == "patch":
            request = PatchRequest(downgrade_to=args.downgrade_to)
        else:
            path = installer.install_modloader()
            print(json.dumps({"modloader_path": str(path)}))
            return 0

        response = handle_request(request, installer)
        print(response.model_dump_json())
        return 0
    except BaseError as e:
        logger.error("%s", e, extra={"error": e.to_dict()})
        return 1


if __name__ == "__main__":
    sys.exit(main())
