"""Command-line interface for WooCommerce to BigCommerce migrations."""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from .config import Settings, get_settings, set_settings
from .errors import ConfigurationError
from .extractors.woocommerce import WooCommerceExtractor
from .extractors.wordpress import WordPressExtractor
from .loaders.bigcommerce import BigCommerceLoader
from .models.mapping import mapping_from_json
from .models.migration import (
    BigCommerceCredentials,
    EntityType,
    ExecutionResult,
    WooCommerceCredentials,
    WordPressCredentials,
)
from .models.phase import PHASES
from .orchestrator import BatchMigrationExecutor, WizardRunner
from .progress import LoggingSink
from .services.rate_limiter import get_rate_limiter
from .services.transformer import EntityTransformer, TransformContext
from .storage.file_store import JsonFileWizardStore
from .wizard.session import MigrationWizard

logger = logging.getLogger(__name__)

ENTITY_CHOICES = [e.value for e in EntityType]


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("connections (default to environment variables)")
    group.add_argument("--wc-url", default=os.environ.get("WC_URL"), help="WooCommerce store URL")
    group.add_argument("--wc-key", default=os.environ.get("WC_CONSUMER_KEY"), help="WooCommerce consumer key")
    group.add_argument("--wc-secret", default=os.environ.get("WC_CONSUMER_SECRET"), help="WooCommerce consumer secret")
    group.add_argument("--bc-store-hash", default=os.environ.get("BC_STORE_HASH"), help="BigCommerce store hash")
    group.add_argument("--bc-token", default=os.environ.get("BC_ACCESS_TOKEN"), help="BigCommerce access token")
    group.add_argument("--wp-url", default=os.environ.get("WP_URL"), help="WordPress URL (defaults to the store URL)")
    group.add_argument("--wp-user", default=os.environ.get("WP_USERNAME"), help="WordPress username")
    group.add_argument("--wp-password", default=os.environ.get("WP_APP_PASSWORD"), help="WordPress application password")


def _add_store_pair_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--source-store", help="Source store identifier (defaults to --wc-url)")
    parser.add_argument("--target-store", help="Target store identifier (defaults to --bc-store-hash)")


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="WooCommerce to BigCommerce migration tool"
    )
    parser.add_argument("--config", help="Path to a settings JSON file")
    parser.add_argument("--state-dir", help="Directory for wizard state files")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Migrate one entity
    migrate_parser = subparsers.add_parser("migrate", help="Migrate one entity type")
    migrate_parser.add_argument("entity", choices=ENTITY_CHOICES, help="Entity type to migrate")
    migrate_parser.add_argument("--resume-file", help="JSON list of already migrated IDs/keys")
    migrate_parser.add_argument(
        "--mapping", action="append", default=[], metavar="ENTITY=PATH",
        help="JSON ID mapping for a dependency, e.g. products=product_map.json",
    )
    migrate_parser.add_argument("--scope", help='JSON source filter, e.g. {"category": 12}')
    migrate_parser.add_argument("--use-wizard", action="store_true",
                                help="Take resume set and mappings from the wizard state")
    migrate_parser.add_argument("--output", help="Write the execution result to this JSON file")
    _add_connection_args(migrate_parser)
    _add_store_pair_args(migrate_parser)

    # Wizard state
    wizard_parser = subparsers.add_parser("wizard", help="Inspect or change wizard state")
    wizard_parser.add_argument(
        "action",
        choices=["status", "go", "next", "previous", "start", "complete", "skip", "reset"],
    )
    wizard_parser.add_argument("phase", nargs="?", type=int, help="Phase number (1-4)")
    _add_connection_args(wizard_parser)
    _add_store_pair_args(wizard_parser)

    # Whole phase
    phase_parser = subparsers.add_parser("run-phase", help="Run every entity of a wizard phase")
    phase_parser.add_argument("phase", type=int, choices=sorted(int(p) for p in PHASES))
    phase_parser.add_argument("--no-complete", action="store_true", help="Leave the phase open afterwards")
    _add_connection_args(phase_parser)
    _add_store_pair_args(phase_parser)

    # Preview a transform
    preview_parser = subparsers.add_parser("preview", help="Preview the target payload for source items")
    preview_parser.add_argument("entity", choices=ENTITY_CHOICES, help="Entity type")
    preview_parser.add_argument("--input", required=True, help="Path to source items JSON file")

    # API server
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = Settings.from_env(Settings.from_json_file(args.config) if args.config else None)
    if args.state_dir:
        settings.state_dir = args.state_dir
    set_settings(settings)

    try:
        if args.command == "migrate":
            return run_migrate(args)
        elif args.command == "wizard":
            return run_wizard_command(args)
        elif args.command == "run-phase":
            return run_phase(args)
        elif args.command == "preview":
            return run_preview(args)
        elif args.command == "serve":
            return run_server(args)
        else:
            parser.print_help()
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2


def _credentials(args):
    wc = WooCommerceCredentials(args.wc_url or "", args.wc_key or "", args.wc_secret or "")
    bc = BigCommerceCredentials(args.bc_store_hash or "", args.bc_token or "")
    wp = None
    if args.wp_url or args.wc_url:
        wp = WordPressCredentials(args.wp_url or args.wc_url, args.wp_user, args.wp_password)
    return wc, bc, wp


def _store_pair(args):
    source = args.source_store or (args.wc_url or "").rstrip("/")
    target = args.target_store or args.bc_store_hash
    if not source or not target:
        raise ConfigurationError("A store pair is required: pass --source-store/--target-store or the credentials")
    return source, target


def _wizard(args) -> MigrationWizard:
    source, target = _store_pair(args)
    store = JsonFileWizardStore(get_settings().state_dir)
    return MigrationWizard(source, target, store)


def build_executor(args) -> BatchMigrationExecutor:
    settings = get_settings()
    limiter = get_rate_limiter(settings)
    wc, bc, wp = _credentials(args)

    source = WooCommerceExtractor(wc, page_size=settings.page_size, timeout=settings.request_timeout)
    target = BigCommerceLoader(bc, rate_limiter=limiter, timeout=settings.request_timeout)
    wordpress = None
    if wp is not None:
        wordpress = WordPressExtractor(wp, page_size=settings.page_size, timeout=settings.request_timeout)
    return BatchMigrationExecutor(source, target, wordpress, settings=settings, rate_limiter=limiter)


def _load_json(path: str) -> Any:
    with open(path) as f:
        return json.load(f)


def _parse_mappings(values: List[str]) -> Dict[EntityType, Dict[int, int]]:
    mappings = {}
    for value in values:
        entity, sep, path = value.partition("=")
        if not sep:
            raise ConfigurationError(f"Mapping must look like ENTITY=PATH, got {value!r}")
        try:
            mappings[EntityType(entity)] = mapping_from_json(_load_json(path))
        except ValueError as e:
            raise ConfigurationError(f"Invalid mapping {value!r}: {e}")
    return mappings


def _print_result(result: ExecutionResult) -> None:
    print("\n" + "=" * 60)
    print(f"{result.entity.value.upper()} MIGRATION {'FAILED' if result.error else 'COMPLETE'}")
    print("=" * 60)
    if result.error:
        print(f"Error: {result.error}")
    print(f"In source: {result.total_in_source} ({result.already_migrated} already migrated)")
    print(f"Succeeded: {result.stats.successful}")
    print(f"Skipped: {result.stats.skipped}")
    print(f"Failed: {result.stats.failed}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    if result.stats.warnings:
        print(f"\nWarnings ({len(result.stats.warnings)}):")
        for warning in result.stats.warnings[:20]:
            print(f"  - {warning}")
        if len(result.stats.warnings) > 20:
            print(f"  ... and {len(result.stats.warnings) - 20} more")


def run_migrate(args) -> int:
    """Migrate one entity type."""
    entity = EntityType(args.entity)
    executor = build_executor(args)
    scope = json.loads(args.scope) if args.scope else None

    if args.use_wizard:
        runner = WizardRunner(_wizard(args), executor)
        result = asyncio.run(runner.run_entity(entity, scope=scope, sink=LoggingSink()))
    else:
        resume = _load_json(args.resume_file) if args.resume_file else []
        result = asyncio.run(executor.run(
            entity,
            resume_set=resume,
            mappings=_parse_mappings(args.mapping),
            scope=scope,
            sink=LoggingSink(),
        ))

    _print_result(result)
    if args.output:
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"Result saved to {args.output}")

    return 1 if result.error else 0


def _print_status(wizard: MigrationWizard) -> None:
    summary = wizard.summary()
    print(f"\nWizard: {summary['source_store']} -> {summary['target_store']}")
    for phase in summary["phases"]:
        marker = ">" if phase["number"] == summary["current_phase"] else " "
        required = "required" if phase["required"] else "optional"
        print(f" {marker} {phase['number']}. {phase['name']:<14} {phase['status']:<12} ({required})")
    print(f"\nRequired phases complete: {'yes' if summary['required_complete'] else 'no'}")


def run_wizard_command(args) -> int:
    """Apply a wizard action and show the resulting state."""
    wizard = _wizard(args)
    needs_phase = {"go", "start", "complete", "skip"}
    if args.action in needs_phase and args.phase is None:
        print(f"wizard {args.action} needs a phase number", file=sys.stderr)
        return 2

    before = wizard.state
    if args.action == "go":
        wizard.go_to_phase(args.phase)
    elif args.action == "next":
        wizard.next_phase()
    elif args.action == "previous":
        wizard.previous_phase()
    elif args.action == "start":
        wizard.start_phase(args.phase)
    elif args.action == "complete":
        wizard.complete_phase(args.phase)
    elif args.action == "skip":
        wizard.skip_phase(args.phase)
    elif args.action == "reset":
        wizard.reset_wizard()

    if args.action != "status" and wizard.state is before:
        print(f"'{args.action}' was not applied, see the log for details")
    _print_status(wizard)
    return 0


def run_phase(args) -> int:
    """Run every entity of a phase against the wizard state."""
    runner = WizardRunner(_wizard(args), build_executor(args))
    results = asyncio.run(runner.run_phase(args.phase, sink=LoggingSink(), complete=not args.no_complete))
    for result in results.values():
        _print_result(result)
    _print_status(runner.wizard)
    return 0 if results and all(r.succeeded for r in results.values()) else 1


def run_preview(args) -> int:
    """Print the payloads source items would be sent as."""
    entity = EntityType(args.entity)
    items = _load_json(args.input)
    if not isinstance(items, list):
        items = [items]

    transformer = EntityTransformer()
    context = TransformContext()
    for item in items:
        try:
            record = transformer.transform(entity, item, context)
        except (KeyError, ValueError, TypeError) as e:
            print(f"Item {item.get('id')}: cannot transform ({e})")
            continue
        print(json.dumps(record.to_dict(), indent=2, default=str))
        print("-" * 40)
    return 0


def run_server(args) -> int:
    """Serve the HTTP API with wizard state stored on disk."""
    import uvicorn

    from .api.deps import set_wizard_store

    set_wizard_store(JsonFileWizardStore(get_settings().state_dir))
    uvicorn.run("wc_migration.api.main:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
