import logging
import os
from typing import Optional

import yaml

from doccrawl.exceptions import ConfigError, ConfigNotFoundError

logger = logging.getLogger(__name__)

CONFIG_SUFFIXES = (".yml", ".yaml", ".json")


class ConfigFileStore:
    """Filesystem IO for crawl and batch config files.

    Responsibility: locate, read and parse YAML (or JSON, a YAML subset)
    files on disk. It does NOT validate their contents.
    """

    def __init__(self, *, configs_dir: Optional[str] = None):
        self.configs_dir = configs_dir

    def list_config_files(self) -> list[str]:
        if not self.configs_dir or not os.path.isdir(self.configs_dir):
            return []
        return sorted(fname for fname in os.listdir(self.configs_dir) if fname.endswith(CONFIG_SUFFIXES))

    def resolve_path(self, config_path: str, relative_to: Optional[str] = None) -> str:
        if os.path.isabs(config_path):
            return config_path
        base = relative_to if relative_to is not None else self.configs_dir
        return os.path.join(base, config_path) if base else config_path

    def load_dict(self, config_path: str, relative_to: Optional[str] = None) -> dict:
        """Return the parsed mapping stored at `config_path`.

        Raises ConfigNotFoundError when the file is missing and ConfigError
        when it cannot be parsed or is not a mapping.
        """
        full_path = self.resolve_path(config_path, relative_to)
        if not os.path.isfile(full_path):
            raise ConfigNotFoundError(full_path)
        try:
            with open(full_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigNotFoundError(full_path, reason=f"unreadable ({e})") from e
        except yaml.YAMLError as e:
            raise ConfigError([f"could not parse file: {e}"], source=full_path) from e
        if not isinstance(data, dict):
            raise ConfigError(["top level must be a mapping"], source=full_path)
        logger.debug("Loaded config %s", full_path)
        return data
