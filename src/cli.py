"""
Command line entry point for the extraction and translation pipeline.

Usage examples:
  python -m src.cli add-urls https://example.com/ https://example.com/about
  python -m src.cli add-endpoints https://example.com/api/urls
  python -m src.cli collect
  python -m src.cli translate --locale es --locale fr
  python -m src.cli status
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from src.app_config import load_app_config
from src.manager import StatusMessage, TranslationManager

logger = logging.getLogger(__name__)

# Commands that queue jobs; the queue is drained before the process exits.
JOB_COMMANDS = {'collect', 'translate', 'translate-missing', 'translate-key'}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Collect translatable strings from pages and translate them with AI.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    add_urls = subparsers.add_parser('add-urls', help='Register page URLs to scan')
    add_urls.add_argument('urls', nargs='+')

    add_endpoints = subparsers.add_parser('add-endpoints', help='Register API endpoints and import their URLs')
    add_endpoints.add_argument('endpoints', nargs='+')

    subparsers.add_parser('refresh-endpoints', help='Re-fetch every active API endpoint')

    list_urls = subparsers.add_parser('list-urls', help='List registered URLs')
    list_urls.add_argument('--kind', choices=['page', 'api-endpoint'])

    toggle_url = subparsers.add_parser('toggle-url', help='Activate or deactivate a URL')
    toggle_url.add_argument('id', type=int)

    remove_url = subparsers.add_parser('remove-url', help='Remove a URL')
    remove_url.add_argument('id', type=int)

    clear_urls = subparsers.add_parser('clear-urls', help='Remove registered URLs')
    clear_urls.add_argument('--kind', choices=['page', 'api-endpoint'])

    subparsers.add_parser('collect', help='Scan every active page URL for strings')

    translate = subparsers.add_parser('translate', help='Translate every untranslated string')
    translate.add_argument('--locale', action='append', dest='locales',
                           help='Target locale (repeatable, default: all target locales)')

    translate_missing = subparsers.add_parser('translate-missing', help="Translate a locale's missing keys")
    translate_missing.add_argument('locale')

    translate_key = subparsers.add_parser('translate-key', help='Translate one missing key record')
    translate_key.add_argument('id', type=int)

    translate_string = subparsers.add_parser('translate-string', help='Translate one catalog entry immediately')
    translate_string.add_argument('key')
    translate_string.add_argument('locale')

    set_value = subparsers.add_parser('set', help='Save a manual translation')
    set_value.add_argument('locale')
    set_value.add_argument('key')
    set_value.add_argument('value')

    subparsers.add_parser('status', help='Show per-locale translation status')
    subparsers.add_parser('progress', help='Show extraction and translation progress')

    missing = subparsers.add_parser('missing', help='List missing keys')
    missing.add_argument('--locale')
    missing.add_argument('--search')

    strings = subparsers.add_parser('strings', help="List a locale's editable strings")
    strings.add_argument('locale')
    strings.add_argument('--search')

    subparsers.add_parser('reset-progress', help='Clear all progress records')

    clear_missing = subparsers.add_parser('clear-missing', help='Clear missing key records')
    clear_missing.add_argument('--resolved', action='store_true',
                               help='Only clear keys that now have a translation')
    return parser


def _print_message(status: StatusMessage) -> None:
    stream = sys.stdout if status.ok else sys.stderr
    print(f"[{status.kind}] {status.message}", file=stream)


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


async def run_command(manager: TranslationManager, args: argparse.Namespace) -> Optional[StatusMessage]:
    """Execute one parsed command; returns the status to print, or None when data was printed."""
    command = args.command
    if command == 'add-urls':
        return manager.add_urls(args.urls)
    if command == 'add-endpoints':
        return await manager.add_endpoints(args.endpoints)
    if command == 'refresh-endpoints':
        return await manager.refresh_endpoints()
    if command == 'list-urls':
        _print_json(manager.list_urls(args.kind))
        return None
    if command == 'toggle-url':
        return manager.toggle_url(args.id)
    if command == 'remove-url':
        return manager.remove_url(args.id)
    if command == 'clear-urls':
        return manager.clear_urls(args.kind)
    if command == 'collect':
        return manager.collect_strings()
    if command == 'translate':
        return manager.translate_all(args.locales)
    if command == 'translate-missing':
        return manager.translate_missing_for_locale(args.locale)
    if command == 'translate-key':
        return manager.translate_missing_key(args.id)
    if command == 'translate-string':
        return await manager.translate_single(args.key, args.locale)
    if command == 'set':
        return manager.save_translation(args.locale, args.key, args.value)
    if command == 'status':
        _print_json(manager.translation_status())
        return None
    if command == 'progress':
        _print_json(manager.progress_overview())
        return None
    if command == 'missing':
        _print_json(manager.missing_keys(args.locale, args.search))
        return None
    if command == 'strings':
        _print_json(manager.editable_strings(args.locale, args.search))
        return None
    if command == 'reset-progress':
        return manager.reset_progress()
    if command == 'clear-missing':
        return manager.clear_resolved_missing() if args.resolved else manager.clear_all_missing()
    raise ValueError(f"Unknown command: {command}")


async def async_main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_app_config()
    manager = TranslationManager.from_config(config)

    status = await run_command(manager, args)
    if status is not None:
        _print_message(status)
        if not status.ok:
            return 1

    if args.command in JOB_COMMANDS and manager.runner.pending:
        report = await manager.run_pending_jobs(description=args.command.replace('-', ' ').capitalize())
        if report.failed:
            logger.error(f"{len(report.failed)} job(s) failed permanently.")
            return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    try:
        return asyncio.run(async_main(argv))
    except KeyboardInterrupt:
        logger.warning("Interrupted; in-flight jobs were abandoned.")
        return 130


if __name__ == '__main__':
    sys.exit(main())
