"""
Configuration management for tagsync

Loads, validates and stores configuration in a single YAML file in the
user's config directory. The management token is stored base64 encoded and
can be overridden from the environment (or a .env file).
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import platformdirs
import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .grouping import DEFAULT_SEPARATORS

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "TAGSYNC_CMA_TOKEN": "cma_token",
    "TAGSYNC_SPACE_ID": "space_id",
    "TAGSYNC_ENVIRONMENT_ID": "environment_id",
}


@dataclass
class TagSyncConfig:
    """Main tagsync configuration"""
    space_id: str = ""
    environment_id: str = "master"

    # Credentials (loaded from config file or environment)
    cma_token: str = ""

    # Sync behavior
    quiet_period_seconds: float = 2.0
    max_conflict_attempts: int = 3
    request_timeout_seconds: float = 10

    # Tag grouping
    tag_separators: List[str] = field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    tag_groups_to_display: List[str] = field(default_factory=list)

    # Logging (relative to config directory)
    log_file: str = "tagsync.log"
    logging_level: str = "INFO"
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 3


class ConfigManager:
    """Manages tagsync configuration loading, validation, and storage"""

    CONFIG_FILE_NAME = "config.yaml"
    ENV_FILE_NAME = ".env"
    APP_NAME = "tagsync"

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize ConfigManager

        Args:
            config_dir: Custom config directory (defaults to user config directory)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(platformdirs.user_config_dir(self.APP_NAME))

        self.config_file = self.config_dir / self.CONFIG_FILE_NAME

    def get_config_location(self) -> Path:
        return self.config_file

    def get_resource_path(self, filename: str) -> Path:
        """Get path for a resource file in the config directory"""
        return self.config_dir / filename

    def load_config(self, use_env: bool = True) -> TagSyncConfig:
        """
        Load configuration from the config directory

        Args:
            use_env: Apply TAGSYNC_* environment overrides (and .env files)

        Returns:
            TagSyncConfig instance with all settings loaded

        Raises:
            FileNotFoundError: If configuration file is missing and the environment
                does not provide the required settings
            ConfigError: If configuration is invalid
        """
        yaml_data: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    yaml_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {self.config_file}: {e}")
        elif not (use_env and self._env_provides_credentials()):
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_file}\n"
                f"Run 'tagsync setup' to create initial configuration."
            )

        credentials = self._decode_credentials(yaml_data.get('credentials') or {})
        sync = yaml_data.get('sync') or {}
        tags = yaml_data.get('tags') or {}
        logging_data = yaml_data.get('logging') or {}

        config = TagSyncConfig(
            space_id=str(yaml_data.get('space_id', '')),
            environment_id=str(yaml_data.get('environment_id', 'master')),
            cma_token=credentials.get('cma_token', ''),
            quiet_period_seconds=float(sync.get('quiet_period_seconds', 2.0)),
            max_conflict_attempts=int(sync.get('max_conflict_attempts', 3)),
            request_timeout_seconds=float(sync.get('request_timeout_seconds', 10)),
            tag_separators=list(tags.get('separators', DEFAULT_SEPARATORS)),
            tag_groups_to_display=self._parse_groups(tags.get('groups_to_display', [])),
            log_file=str(logging_data.get('file', 'tagsync.log')),
            logging_level=str(logging_data.get('level', 'INFO')),
            log_max_bytes=int(logging_data.get('max_bytes', 10 * 1024 * 1024)),
            log_backup_count=int(logging_data.get('backup_count', 3)),
        )

        if use_env:
            self._apply_env_overrides(config)

        self.validate_config(config)
        return config

    def save_config(self, config: TagSyncConfig) -> None:
        """Save configuration to the config directory with owner-only permissions"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        yaml_data = {
            'space_id': config.space_id,
            'environment_id': config.environment_id,
            'credentials': {
                'cma_token': base64.b64encode(config.cma_token.encode()).decode(),
            },
            'sync': {
                'quiet_period_seconds': config.quiet_period_seconds,
                'max_conflict_attempts': config.max_conflict_attempts,
                'request_timeout_seconds': config.request_timeout_seconds,
            },
            'tags': {
                'separators': list(config.tag_separators),
                'groups_to_display': list(config.tag_groups_to_display),
            },
            'logging': {
                'file': config.log_file,
                'level': config.logging_level,
                'max_bytes': config.log_max_bytes,
                'backup_count': config.log_backup_count,
            },
        }

        with open(self.config_file, 'w') as f:
            f.write("# tagsync configuration\n")
            f.write(f"# Stored in: {self.config_file}\n")
            f.write("# This file contains an encoded access token - keep it secure!\n")
            f.write("# Run 'tagsync setup' to reconfigure\n\n")

            yaml.dump(yaml_data, f, default_flow_style=False, sort_keys=False)

        os.chmod(self.config_file, 0o600)
        logger.info(f"Configuration saved to {self.config_file}")

    def _decode_credentials(self, encoded_creds: Dict[str, str]) -> Dict[str, str]:
        """Decode base64 encoded credentials"""
        try:
            return {
                'cma_token': base64.b64decode(encoded_creds.get('cma_token', ''), validate=True).decode(),
            }
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to decode credentials: {e}")

    @staticmethod
    def _parse_groups(groups: Any) -> List[str]:
        """Accept either a list or a comma-separated string of group names"""
        if isinstance(groups, str):
            groups = groups.split(',')
        return [str(group).strip() for group in groups or [] if str(group).strip()]

    def _load_env_files(self) -> None:
        load_dotenv(self.get_resource_path(self.ENV_FILE_NAME))
        load_dotenv(Path.cwd() / self.ENV_FILE_NAME)

    def _env_provides_credentials(self) -> bool:
        self._load_env_files()
        return bool(os.getenv('TAGSYNC_CMA_TOKEN') and os.getenv('TAGSYNC_SPACE_ID'))

    def _apply_env_overrides(self, config: TagSyncConfig) -> None:
        self._load_env_files()
        for env_var, attribute in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                logger.debug(f"Using {attribute} from {env_var}")
                setattr(config, attribute, value)

    def validate_config(self, config: TagSyncConfig) -> None:
        """Validate configuration for common issues"""
        errors = []

        if not config.space_id.strip():
            errors.append("space_id is required")
        if not config.environment_id.strip():
            errors.append("environment_id cannot be empty")
        if not config.cma_token:
            errors.append("Content Management API token is required")

        if config.quiet_period_seconds <= 0:
            errors.append("quiet_period_seconds must be greater than 0")
        if config.max_conflict_attempts < 1:
            errors.append("max_conflict_attempts must be at least 1")
        if config.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be greater than 0")

        if not any(config.tag_separators):
            errors.append("At least one non-empty tag separator is required")

        if not config.log_file.strip():
            errors.append("logging file cannot be empty")
        if config.log_max_bytes < 0:
            errors.append("logging max_bytes cannot be negative")
        if config.log_backup_count < 0:
            errors.append("logging backup_count cannot be negative")

        if errors:
            raise ConfigError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {error}" for error in errors) +
                "\n\nRun 'tagsync setup' to fix configuration issues."
            )

    def config_exists(self) -> bool:
        return self.config_file.exists()

    def remove_config(self) -> bool:
        """Remove configuration file (for cleanup/reset)"""
        if self.config_file.exists():
            self.config_file.unlink()
            return True
        return False

    def create_example_config(self) -> Path:
        """Create example configuration file for reference"""
        example_file = self.config_dir / "config.example.yaml"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        with open(example_file, 'w') as f:
            f.write("""# tagsync configuration example
# Run 'tagsync setup' for interactive configuration

space_id: "abc123xyz"
environment_id: "master"

# Encoded token (generated by setup wizard); TAGSYNC_CMA_TOKEN overrides it
credentials:
  cma_token: "<base64-encoded>"

sync:
  # Seconds without edits before queued tag changes are written
  quiet_period_seconds: 2.0
  # Write attempts per batch when the entry changed remotely
  max_conflict_attempts: 3
  request_timeout_seconds: 10

tags:
  # Group label is the part of a tag name before the first separator
  separators: [":", "/"]
  # Only offer tags from these groups (empty = all tags)
  groups_to_display: []

logging:
  # Relative paths are resolved against the config directory
  file: tagsync.log
  level: INFO
  max_bytes: 10485760
  backup_count: 3
""")

        logger.info(f"Example configuration created: {example_file}")
        return example_file


def load_config(config_dir: Optional[Path] = None) -> TagSyncConfig:
    """Convenience function to load tagsync configuration"""
    manager = ConfigManager(config_dir)
    return manager.load_config()


def save_config(config: TagSyncConfig, config_dir: Optional[Path] = None) -> None:
    """Convenience function to save tagsync configuration"""
    manager = ConfigManager(config_dir)
    manager.save_config(config)
