"""
Interactive Setup Wizard for tagsync

Guides users through entering the Contentful space and access token,
checks access by listing tags, and saves the configuration.
"""

import getpass
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import ConfigManager, TagSyncConfig
from .contentful_client import ContentfulClient
from .errors import CatalogUnavailable, ConfigError
from .grouping import DEFAULT_SEPARATORS, group_label
from .models import Item

logger = logging.getLogger(__name__)


class SetupWizard:
    """Interactive setup wizard for tagsync configuration"""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_manager = ConfigManager(config_dir)

    def run(self) -> int:
        """
        Run the complete setup wizard

        Returns:
            Exit code (0 for success)
        """
        try:
            print("🚀 Welcome to tagsync setup!")
            print("Let's connect tagsync to your Contentful space")
            print()
            return self._run_fresh_setup()

        except KeyboardInterrupt:
            print("\n⏹️ Setup cancelled by user")
            return 130
        except ConfigError as e:
            print(f"\n❌ Setup failed: {e}")
            return 1

    def _run_fresh_setup(self) -> int:
        print("📝 Step 1: Space and Credentials")
        space_id, environment_id, token, tags = self._get_credentials()

        print("\n🏷️ Step 2: Tag Groups")
        separators = list(DEFAULT_SEPARATORS)
        groups = self._configure_groups(tags, separators)

        print("\n⚙️ Step 3: Sync Preferences")
        quiet_period = self._ask_float("Seconds to wait after the last edit before saving", 2.0)

        print("\n💾 Step 4: Saving Configuration")
        config = TagSyncConfig(
            space_id=space_id,
            environment_id=environment_id,
            cma_token=token,
            quiet_period_seconds=quiet_period,
            tag_separators=separators,
            tag_groups_to_display=groups,
        )
        self.config_manager.validate_config(config)
        self.config_manager.save_config(config)

        print("\n✅ Setup completed successfully!")
        print(f"Configuration saved to: {self.config_manager.config_file}")
        print()
        print("Next steps:")
        print("  tagsync tags                     # List available tags")
        print("  tagsync show ENTRY_ID            # Show tags on an entry")
        print("  tagsync edit ENTRY_ID --add TAG  # Add a tag to an entry")
        return 0

    def _get_credentials(self) -> Tuple[str, str, str, List[Item]]:
        """Ask for space and token until tags can be listed"""
        while True:
            print()
            space_id = input("Space ID: ").strip()
            if not space_id:
                print("❌ Space ID cannot be empty")
                continue

            environment_id = input("Environment ID [master]: ").strip() or "master"

            token = getpass.getpass("Content Management API token: ").strip()
            if not token:
                print("❌ Token cannot be empty")
                continue

            print("🔐 Checking access by listing tags...")
            tags = self._test_access(space_id, environment_id, token)
            if tags is not None:
                print(f"✅ Access confirmed, found {len(tags)} tags")
                return space_id, environment_id, token, tags

            print("❌ Could not list tags. Please check the space, environment and token.")
            retry = input("Try again? (y/n): ").strip().lower()
            if retry != 'y':
                raise ConfigError("A working Contentful token is required")

    def _test_access(self, space_id: str, environment_id: str, token: str) -> Optional[List[Item]]:
        try:
            client = ContentfulClient(space_id, token, environment_id=environment_id)
            return client.list_all()
        except CatalogUnavailable as e:
            logger.debug(f"Access check failed: {e}")
            return None

    def _configure_groups(self, tags: List[Item], separators: List[str]) -> List[str]:
        """Offer the discovered tag groups as an optional filter"""
        counts: Dict[str, int] = {}
        for tag in tags:
            label = group_label(tag.name, separators)
            if label:
                counts[label] = counts.get(label, 0) + 1

        if not counts:
            print("No grouped tags found (e.g. 'Group: Tag'); all tags will be offered")
            return []

        print("Tag groups found:")
        for label, count in sorted(counts.items()):
            print(f"  - {label} ({count} tags)")

        answer = input("Limit selectable tags to these groups (comma-separated, blank for all): ").strip()
        if not answer:
            return []

        groups = [group.strip() for group in answer.split(',') if group.strip()]
        unknown = [group for group in groups if group.casefold() not in {c.casefold() for c in counts}]
        if unknown:
            print(f"⚠️ No tags currently in: {', '.join(unknown)}")
        return groups

    def _ask_float(self, prompt: str, default: float) -> float:
        while True:
            answer = input(f"{prompt} [{default}]: ").strip()
            if not answer:
                return default
            try:
                value = float(answer)
            except ValueError:
                print("❌ Please enter a number")
                continue
            if value <= 0:
                print("❌ Please enter a positive number")
                continue
            return value
