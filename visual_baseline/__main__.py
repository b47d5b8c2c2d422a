#!/usr/bin/env python3
"""
Baseline Generator CLI
======================
Crawl a site and capture baseline screenshots for visual regression tests.

All configuration flows through ``crawl-config.json`` (see ``run_config``);
the target site comes from ``--base-url`` or the ``BASE_URL`` environment
variable.

Run with: python -m visual_baseline generate [path]
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env (BASE_URL etc.) before anything reads the environment
load_dotenv(Path.cwd() / '.env')

from .generator import BaselineGenerator, SiteUnreachableError
from .run_config import DEFAULT_CONFIG_FILE, ConfigError, CrawlConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://localhost"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='visual-baseline',
        description='Visual regression baseline generator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m visual_baseline generate                       # crawl + capture everything
  python -m visual_baseline generate /about                # capture a single path
  BASE_URL=https://staging.example.com python -m visual_baseline generate
        """
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_FILE,
                        help=f'Crawl config file (default: {DEFAULT_CONFIG_FILE})')
    parser.add_argument('--base-url', default=None,
                        help=f'Site to crawl (default: $BASE_URL or {DEFAULT_BASE_URL})')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command')
    gen = sub.add_parser('generate', help='Crawl pages and generate baseline screenshots')
    gen.add_argument('path', nargs='?', default=None,
                     help='Specific page path to generate (e.g. /about)')
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command != 'generate':
        parser.print_help()
        return 2

    base_url = args.base_url or os.environ.get('BASE_URL') or DEFAULT_BASE_URL

    try:
        config = CrawlConfig.from_file(args.config)
        generator = BaselineGenerator(config, base_url, headless=not args.headed)
        result = generator.run(args.path)
    except (ConfigError, ValueError) as exc:
        logger.error(str(exc))
        return 2
    except SiteUnreachableError as exc:
        logger.error(str(exc))
        return 1

    logger.info(
        f"Baseline generation complete: {result.manifest.total_screenshots} screenshot(s), "
        f"{len(result.manifest.errors)} error(s) in {result.elapsed_sec:.1f}s"
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
