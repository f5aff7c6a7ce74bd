"""
tagsync CLI - Command Line Interface

Inspect and edit the tags of Contentful entries with the same optimistic,
debounced and conflict-safe sync the tag field uses.
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from . import __version__
from .config import ConfigManager, TagSyncConfig
from .contentful_client import ContentfulClient
from .errors import ConfigError, PoolUnavailable, TagSyncError
from .field import TagField
from .grouping import group_items
from .models import Item, OperationKind
from .pool import ItemPool

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", config: Optional[TagSyncConfig] = None,
                  log_dir: Optional[Path] = None) -> None:
    """Setup console logging, plus a rotating log file when configured"""
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config is None or log_dir is None:
        return

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Could not set up file logging: {e}")
        logger.info("Continuing with console logging only")


def _load(args) -> Tuple[ConfigManager, TagSyncConfig]:
    config_manager = ConfigManager(args.config_dir)
    config = config_manager.load_config()
    level = "DEBUG" if args.verbose else config.logging_level
    setup_logging(level, config, config_manager.config_dir)
    return config_manager, config


def _client(config: TagSyncConfig) -> ContentfulClient:
    return ContentfulClient(
        config.space_id,
        config.cma_token,
        environment_id=config.environment_id,
        timeout=config.request_timeout_seconds,
    )


def _make_field(config: TagSyncConfig, entry_id: str) -> TagField:
    client = _client(config)
    return TagField(
        catalog=client,
        store=client,
        record_id=entry_id,
        validity_sink=ConsoleValiditySink(),
        quiet_period=config.quiet_period_seconds,
        max_attempts=config.max_conflict_attempts,
        groups_to_display=config.tag_groups_to_display,
        separators=config.tag_separators,
    )


class ConsoleValiditySink:
    """Reports field validity changes on the console"""

    def set_valid(self, valid: bool) -> None:
        if not valid:
            print("⚠️ Please select at least one tag.")


def _format_item(item: Item) -> str:
    return f"{item.name} [{item.visibility.value}] ({item.id})"


def _print_grouped(items: Iterable[Item], separators: List[str], indent: str = "  ") -> None:
    for label, members in group_items(items, separators).items():
        print(f"{indent}{label or '(ungrouped)'}:")
        for item in members:
            print(f"{indent}  - {_format_item(item)}")


def cmd_setup(args) -> int:
    """Interactive setup wizard"""
    from .setup_wizard import SetupWizard

    setup_wizard = SetupWizard(args.config_dir)
    return setup_wizard.run()


def cmd_tags(args) -> int:
    """List every tag in the configured environment"""
    _, config = _load(args)

    try:
        pool = ItemPool.load(_client(config))
    except PoolUnavailable as e:
        print(f"❌ {e}")
        return 1

    groups = args.group or config.tag_groups_to_display
    if groups:
        pool = pool.filter_groups(groups, config.tag_separators)

    print(f"🏷️ {len(pool)} tags in {config.space_id}/{config.environment_id}")
    _print_grouped(pool, config.tag_separators)
    return 0


def cmd_show(args) -> int:
    """Show selected and available tags for an entry"""
    _, config = _load(args)
    field = _make_field(config, args.entry_id)
    view = asyncio.run(field.load())

    if view.load_error:
        print(f"❌ {view.load_error}")
        return 1

    _print_view(field, config)
    return 0


def _print_view(field: TagField, config: TagSyncConfig) -> None:
    view = field.view()
    print(f"📄 Entry {field.record_id}")
    print(f"Selected ({len(view.selected_items)}):")
    _print_grouped(view.selected_items, config.tag_separators)
    print(f"Available ({len(view.available_items)}):")
    for item in view.available_items:
        print(f"  - {_format_item(item)}")
    print(f"Valid: {'✅' if view.is_valid else '❌'}")


def _resolve(field: TagField, tag: str) -> Optional[str]:
    """Map a tag id or name to an id in the field's pool"""
    pool = field.selection.pool
    if tag in pool:
        return tag
    item = pool.find_by_name(tag)
    return item.id if item else None


async def _edit(field: TagField, toggles: List[Tuple[OperationKind, str]]) -> int:
    view = await field.load()
    if view.load_error:
        print(f"❌ {view.load_error}")
        return 1

    unknown: List[str] = []
    for kind, tag in toggles:
        item_id = _resolve(field, tag)
        if item_id is None:
            print(f"❌ Unknown tag: {tag}")
            unknown.append(tag)
            continue

        if kind is OperationKind.ADD:
            changed = field.toggle_add(item_id)
        else:
            changed = field.toggle_remove(item_id)

        symbol = "+" if kind is OperationKind.ADD else "-"
        if changed:
            print(f"  {symbol} {tag}")
        else:
            print(f"  = {tag} (already {'selected' if kind is OperationKind.ADD else 'not selected'})")

    print("🔄 Saving tag changes...")
    await field.close()

    view = field.view()
    if view.is_sync_error:
        error = field.reconciler.last_error
        print(f"❌ Could not save tags: {error}")
        return 1

    record = field.reconciler.last_record
    version = f" (version {record.version})" if record else ""
    print(f"✅ Tags saved{version}")

    if unknown:
        print(f"❌ Skipped {len(unknown)} unknown tag(s): {', '.join(unknown)}")
        return 1
    return 0


def cmd_edit(args) -> int:
    """Add and remove tags on an entry"""
    toggles: List[Tuple[OperationKind, str]] = getattr(args, "toggles", None) or []
    if not toggles:
        print("❌ Nothing to do: pass --add and/or --remove")
        return 1

    _, config = _load(args)
    field = _make_field(config, args.entry_id)
    result = asyncio.run(_edit(field, toggles))
    if result == 0 and args.show:
        _print_view(field, config)
    return result


def cmd_config(args) -> int:
    """Show or validate configuration"""
    config_manager = ConfigManager(args.config_dir)

    if args.action == "example":
        path = config_manager.create_example_config()
        print(f"📝 Example configuration written to {path}")
        return 0

    try:
        config = config_manager.load_config()
    except FileNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except ConfigError as e:
        print(f"❌ {e}")
        return 1

    if args.action == "check":
        print(f"✅ Configuration is valid: {config_manager.get_config_location()}")
        return 0

    print(f"📁 Configuration: {config_manager.get_config_location()}")
    print(f"  Space:          {config.space_id}")
    print(f"  Environment:    {config.environment_id}")
    print(f"  Token:          {'*' * 8}{config.cma_token[-4:]}")
    print(f"  Quiet period:   {config.quiet_period_seconds}s")
    print(f"  Max attempts:   {config.max_conflict_attempts}")
    print(f"  Separators:     {' '.join(config.tag_separators)}")
    groups = ', '.join(config.tag_groups_to_display) or '(all)'
    print(f"  Tag groups:     {groups}")
    return 0


class _ToggleAction(argparse.Action):
    """Collect --add/--remove in command line order"""

    def __call__(self, parser, namespace, values, option_string=None):
        toggles = list(getattr(namespace, self.dest, None) or [])
        kind = OperationKind.ADD if option_string == "--add" else OperationKind.REMOVE
        toggles.append((kind, values))
        setattr(namespace, self.dest, toggles)


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser"""
    parser = argparse.ArgumentParser(
        prog="tagsync",
        description="Edit Contentful entry tags with coalesced, conflict-safe writes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tagsync setup                                  # Interactive setup wizard
  tagsync tags                                   # List all tags
  tagsync tags --group Locale                    # List tags in a group
  tagsync show 5KsDBWseXY6QegucYAoacS            # Show an entry's tags
  tagsync edit 5KsDBWseXY6QegucYAoacS --add "Locale: en-US" --remove draft
  tagsync config show                            # Display current configuration

For detailed help on any command, use: tagsync <command> --help
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"tagsync {__version__}"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory containing configuration files (default: user config directory)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "setup",
        help="Interactive setup wizard",
        description="Configure the Contentful space, environment and access token"
    )

    tags_parser = subparsers.add_parser(
        "tags",
        help="List available tags",
        description="List every tag, grouped by name prefix"
    )
    tags_parser.add_argument(
        "--group",
        action="append",
        help="Only show tags in this group (repeatable)"
    )

    show_parser = subparsers.add_parser(
        "show",
        help="Show the tags of an entry",
        description="Show selected and available tags for an entry"
    )
    show_parser.add_argument("entry_id", help="Entry ID")

    edit_parser = subparsers.add_parser(
        "edit",
        help="Add or remove tags on an entry",
        description="Apply tag changes in order and save them as one write"
    )
    edit_parser.add_argument("entry_id", help="Entry ID")
    edit_parser.add_argument(
        "--add",
        dest="toggles",
        action=_ToggleAction,
        metavar="TAG",
        help="Tag ID or name to add (repeatable)"
    )
    edit_parser.add_argument(
        "--remove",
        dest="toggles",
        action=_ToggleAction,
        metavar="TAG",
        help="Tag ID or name to remove (repeatable)"
    )
    edit_parser.add_argument(
        "--show",
        action="store_true",
        help="Show the resulting tags after saving"
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="View, validate or write an example configuration"
    )
    config_parser.add_argument(
        "action",
        choices=["show", "check", "example"],
        help="Configuration action to perform"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else "WARNING")

    if not args.command:
        parser.print_help()
        return 0

    command_handlers = {
        "setup": cmd_setup,
        "tags": cmd_tags,
        "show": cmd_show,
        "edit": cmd_edit,
        "config": cmd_config,
    }

    handler = command_handlers.get(args.command)
    if handler:
        try:
            return handler(args)
        except KeyboardInterrupt:
            print("\n⏹️ Cancelled by user")
            return 130
        except FileNotFoundError as e:
            print(f"❌ {e}")
            return 1
        except TagSyncError as e:
            print(f"❌ {e}")
            return 1
        except Exception as e:
            logger.exception("Unexpected error in command handler")
            print(f"❌ Unexpected error: {e}")
            return 1
    else:
        print(f"❌ Unknown command: {args.command}")
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
