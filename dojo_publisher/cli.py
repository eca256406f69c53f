"""
Command line entrypoint for CI jobs.

    dojo-publisher publish --artifact reports/zap.json --scan_type "ZAP Scan" \
        --product_name Acme --engagement_name nightly
    dojo-publisher test-connection
    dojo-publisher list products|engagements|scan-types

Global settings are read from ``--config`` (YAML, ``defectdojo:`` section) and
``DEFECTDOJO_*`` environment variables, optionally loaded from a ``.env`` file.
Options given on the command line override both.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .client import DefectDojoClient
from .config import StepSettings, effective_settings, load_global_settings
from .errors import AbortError, ApiClientError
from .publisher import DefectDojoPublisher, client_from_settings

logger = logging.getLogger(__name__)


def _bool_arg(value: str) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {value!r}")


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", required=False, help="DefectDojo base URL. Overrides defectdojo.url / DEFECTDOJO_URL.")
    parser.add_argument("--api_key", required=False, help="API token. Overrides defectdojo.api_key / DEFECTDOJO_TOKEN.")
    parser.add_argument("--connection_timeout", type=int, required=False,
                        help="Connect timeout in seconds (0 disables). Negative values use the configured default.")
    parser.add_argument("--read_timeout", type=int, required=False,
                        help="Read timeout in seconds (0 disables). Negative values use the configured default.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dojo-publisher",
        description="Upload scan reports to DefectDojo from a CI pipeline.",
    )
    parser.add_argument("--config", required=False, default=None,
                        help="Path to a YAML file with a 'defectdojo' section.")
    parser.add_argument("--env_file", required=False, default=".env",
                        help="dotenv file to load before reading DEFECTDOJO_* variables. Defaults to .env.")
    parser.add_argument("--log_level", required=False, default="INFO",
                        help="Logging level (e.g. DEBUG, INFO, WARNING, ERROR). Defaults to INFO.")
    sub = parser.add_subparsers(dest="command", required=True)

    publish = sub.add_parser("publish", help="Resolve product/engagement and upload a scan report.")
    publish.add_argument("--artifact", required=True, help="Path of the report, relative to --workspace.")
    publish.add_argument("--scan_type", required=True, help="DefectDojo scan type, e.g. 'ZAP Scan'.")
    publish.add_argument("--workspace", default=".", help="Directory the artifact path is relative to.")
    publish.add_argument("--product_id", help="Product id. Takes precedence over --product_name.")
    publish.add_argument("--product_name", help="Product name, looked up by exact match.")
    publish.add_argument("--engagement_id", help="Engagement id. Takes precedence over --engagement_name.")
    publish.add_argument("--engagement_name", help="Engagement name, looked up or created.")
    publish.add_argument("--source_code_url", help="Source code management URI recorded with the scan.")
    publish.add_argument("--branch_tag", help="Branch or tag recorded with the scan.")
    publish.add_argument("--commit_hash", help="Commit hash recorded with the scan.")
    publish.add_argument("--auto_create_products", type=_bool_arg, default=None,
                         help="Skip the product lookup (true/false).")
    publish.add_argument("--auto_create_engagements", type=_bool_arg, default=None,
                         help="Create the engagement named by --engagement_name (true/false).")
    publish.add_argument("--reupload_scan", type=_bool_arg, default=None,
                         help="Reimport over an existing scan of the same type (true/false).")
    _add_connection_args(publish)

    test = sub.add_parser("test-connection", help="Check URL and API key against the products endpoint.")
    _add_connection_args(test)

    listing = sub.add_parser("list", help="Print id and name of every record of a resource.")
    listing.add_argument("resource", choices=["products", "engagements", "scan-types"])
    listing.add_argument("--product_id", help="Restrict engagements to this product.")
    _add_connection_args(listing)
    return parser


def _step_from_args(args: argparse.Namespace) -> StepSettings:
    return StepSettings(
        artifact=getattr(args, "artifact", None),
        scan_type=getattr(args, "scan_type", None),
        product_id=getattr(args, "product_id", None),
        product_name=getattr(args, "product_name", None),
        engagement_id=getattr(args, "engagement_id", None),
        engagement_name=getattr(args, "engagement_name", None),
        source_code_url=getattr(args, "source_code_url", None),
        commit_hash=getattr(args, "commit_hash", None),
        branch_tag=getattr(args, "branch_tag", None),
        url=args.url,
        api_key=args.api_key,
        auto_create_products=getattr(args, "auto_create_products", None),
        auto_create_engagements=getattr(args, "auto_create_engagements", None),
        reupload_scan=getattr(args, "reupload_scan", None),
        connection_timeout=args.connection_timeout,
        read_timeout=args.read_timeout,
    )


def _list(client: DefectDojoClient, resource: str, product_id: Optional[str]) -> None:
    if resource == "products":
        records = client.get_products()
    elif resource == "engagements":
        if not product_id:
            raise ValueError("--product_id is required to list engagements")
        records = client.get_engagements(product_id)
    else:
        records = client.get_scan_types()
    for record in records:
        print(f"{record.get('id')}\t{record.get('name')}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level_name = (args.log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    if args.env_file and os.path.isfile(args.env_file):
        load_dotenv(dotenv_path=args.env_file)

    try:
        global_settings = load_global_settings(args.config)
        step = _step_from_args(args)
        if args.command == "publish":
            DefectDojoPublisher(step, global_settings).perform(workspace=args.workspace)
            return 0
        settings = effective_settings(step, global_settings)
        with client_from_settings(settings) as client:
            if args.command == "test-connection":
                client.test_connection()
                logger.info("Connection OK")
            else:
                _list(client, args.resource, getattr(args, "product_id", None))
        return 0
    except AbortError:
        # already logged by the publisher
        return 1
    except (ApiClientError, ValueError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
