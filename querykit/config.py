"""
Configuration management for querykit.

Settings come from TOML files and QUERYKIT_* environment variables,
layered in this order (later wins):

    defaults
    ~/.config/querykit/config.toml        user file
    ./querykit.toml, ./.querykitrc,       first local file found
    ./.querykit/config.toml
    --config FILE                         explicit file
    QUERYKIT_DEFAULT_PAGE_SIZE=25 ...     environment
    command-line flags                    via init_config()

Example querykit.toml:

    database_url = "sqlite:///library.db"
    default_page_size = 25
    max_page_size = 200
    strict_parsing = true
    queries_file = "~/queries.yaml"
"""
import os
import tomli
import tomli_w
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, fields, asdict

ENV_PREFIX = "QUERYKIT_"
OUTPUT_FORMATS = ("table", "json")
TRUE_STRINGS = ("true", "1", "yes", "on")


def user_config_path() -> Path:
    """Location of the per-user config file."""
    return Path.home() / ".config" / "querykit" / "config.toml"


def local_config_paths() -> List[Path]:
    """Candidate project config files, in search order."""
    cwd = Path.cwd()
    return [cwd / "querykit.toml", cwd / ".querykitrc", cwd / ".querykit" / "config.toml"]


@dataclass
class QueryKitConfig:
    """
    Settings shared by the library defaults and the command line.

    Attributes:
        database_url: SQLAlchemy URL used by Database() and the CLI
        database_echo: Log every SQL statement
        default_page_size: Page size when a request names none
        max_page_size: Largest accepted page size (0 = no limit)
        strict_parsing: Reject malformed filter/sort clauses instead of dropping them
        queries_file: YAML file of saved queries
        output_format: CLI output, "table" or "json"
        log_level: Level name for the CLI's logging setup
    """

    database_url: Optional[str] = None
    database_echo: bool = False

    default_page_size: int = 10
    max_page_size: int = 0
    strict_parsing: bool = False
    queries_file: Optional[str] = None

    output_format: str = "table"
    log_level: str = "WARNING"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "QueryKitConfig":
        """
        Build a configuration from files and environment.

        Args:
            config_file: Extra file applied after the user and local files

        Returns:
            Merged configuration

        Raises:
            ValueError: A setting has an unusable value
        """
        config = cls()

        sources = [user_config_path()]
        sources += [next((p for p in local_config_paths() if p.exists()), None)]
        if config_file:
            sources.append(Path(config_file))

        for path in sources:
            if path is not None and path.exists():
                config._update(_read_toml(path))

        config._update_from_env(os.environ)
        if config.queries_file:
            config.queries_file = os.path.expanduser(os.path.expandvars(config.queries_file))

        config.validate()
        return config

    def _update(self, data: Dict[str, Any]):
        names = {f.name for f in fields(self)}
        for key, value in data.items():
            if key in names:
                setattr(self, key, value)

    def _update_from_env(self, environ):
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(type(self), f.name, None)
            if isinstance(default, bool):
                value = raw.strip().lower() in TRUE_STRINGS
            elif isinstance(default, int):
                try:
                    value = int(raw)
                except ValueError:
                    raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must be an integer, got {raw!r}")
            else:
                value = raw
            setattr(self, f.name, value)

    def validate(self):
        """
        Check setting values.

        Raises:
            ValueError: First invalid setting found
        """
        if self.default_page_size < 1:
            raise ValueError(f"default_page_size must be at least 1, got {self.default_page_size}")
        if self.max_page_size < 0:
            raise ValueError(f"max_page_size cannot be negative, got {self.max_page_size}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
                             f"got {self.output_format!r}")

    def save(self, path: Optional[Path] = None) -> Path:
        """
        Write the configuration as TOML.

        Unset values are omitted since TOML cannot express None.

        Args:
            path: Target file (defaults to the user config file)

        Returns:
            The path written
        """
        path = Path(path) if path is not None else user_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "wb") as f:
            tomli_w.dump({k: v for k, v in asdict(self).items() if v is not None}, f)
        return path

    def get_database_url(self) -> str:
        """SQLAlchemy URL to connect to; in-memory SQLite when unset."""
        return self.database_url or "sqlite://"


def _read_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomli.load(f)


_config: Optional[QueryKitConfig] = None


def get_config(reload: bool = False, config_file: Optional[Path] = None) -> QueryKitConfig:
    """
    Get the process-wide configuration, loading it on first use.

    Args:
        reload: Discard the loaded configuration and load again
        config_file: Extra file to apply when loading
    """
    global _config
    if _config is None or reload:
        _config = QueryKitConfig.load(config_file)
    return _config


def init_config(config_file: Optional[Path] = None, **overrides) -> QueryKitConfig:
    """
    Set up the process-wide configuration for a command-line run.

    Args:
        config_file: File named by --config (forces a reload)
        **overrides: Values from command-line flags; None means "not given"

    Returns:
        The configuration, with overrides applied
    """
    config = get_config(reload=config_file is not None, config_file=config_file)
    for key, value in overrides.items():
        if value is not None and hasattr(config, key):
            setattr(config, key, value)
    return config
