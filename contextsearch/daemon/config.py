"""Configuration management for ContextSearch."""

from pathlib import Path
from typing import Optional, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from loguru import logger


class WebEngine(BaseModel):
    name: str
    url: str
    icon: Optional[str] = None


def default_bangs() -> Dict[str, WebEngine]:
    return {
        "g": WebEngine(name="Google", url="https://google.com/search?q=", icon="🔍"),
        "w": WebEngine(name="Wikipedia", url="https://en.wikipedia.org/wiki/Special:Search/", icon="📚"),
        "yt": WebEngine(name="YouTube", url="https://youtube.com/results?search_query=", icon="▶️"),
        "gh": WebEngine(name="GitHub", url="https://github.com/search?q=", icon="🐙"),
        "so": WebEngine(name="Stack Overflow", url="https://stackoverflow.com/search?q=", icon="📋"),
        "r": WebEngine(name="Reddit", url="https://reddit.com/search?q=", icon="🤖"),
    }


DEFAULT_FILE_EXCLUSIONS = [
    "**/node_modules",
    "**/dist",
    "**/build",
    "**/.git",
    "**/.vscode",
    "**/coverage",
    "**/Library/Caches",
]


class SearchSettings(BaseModel):
    """
    Settings surface read by the search pipeline.

    Accepts both the snake_case field names and the camelCase keys used by
    the settings file of the UI shell. A missing flag means "enabled".
    """
    model_config = ConfigDict(populate_by_name=True)

    search_apps: bool = Field(default=True, alias="searchApps")
    search_tabs: bool = Field(default=True, alias="searchTabs")
    search_files: bool = Field(default=True, alias="searchFiles")
    search_commands: bool = Field(default=True, alias="searchCommands")
    search_shortcuts: bool = Field(default=True, alias="searchShortcuts")
    search_plugins: bool = Field(default=True, alias="searchPlugins")
    web_bangs: Dict[str, WebEngine] = Field(default_factory=default_bangs, alias="webBangs")
    file_exclusions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_EXCLUSIONS),
        alias="fileExclusions"
    )
    selected_apps: List[str] = Field(default_factory=list, alias="selectedApps")

    @field_validator('web_bangs')
    @classmethod
    def normalize_bang_keys(cls, v: Dict[str, WebEngine]) -> Dict[str, WebEngine]:
        return {key.strip().lower(): engine for key, engine in v.items() if key.strip()}


class RankingConfig(BaseModel):
    max_results: int = 20
    max_fuzzy_results: int = 18
    tie_band: float = 0.05
    drop_threshold: float = 0.25
    match_threshold: float = 0.2
    field_penalty: float = 0.1
    min_query_length: int = 2
    field_weights: Dict[str, float] = Field(default_factory=lambda: {
        "name": 3.0,
        "title": 2.0,
        "url": 1.5,
        "path": 1.0,
    })

    @field_validator('tie_band', 'drop_threshold', 'match_threshold', 'field_penalty')
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("ranking thresholds must be between 0 and 1")
        return v

    @field_validator('max_results', 'max_fuzzy_results', 'min_query_length')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class TimeoutConfig(BaseModel):
    """Timeouts in seconds."""
    search: float = 5.0
    provider: float = 4.5
    apps_query: float = 1.0
    file_query: float = 1.0
    window_discovery: float = 5.0
    tab_script: float = 15.0
    shortcuts: float = 5.0


class CacheConfig(BaseModel):
    """Cache lifetimes in seconds."""
    apps_ttl: float = 600.0
    shortcuts_ttl: float = 60.0
    plugins_ttl: float = 5.0
    category_ttls: Dict[str, float] = Field(default_factory=lambda: {
        "browsers": 10.0,
        "terminals": 5.0,
        "editors": 30.0,
        "productivity": 60.0,
        "system": 120.0,
        "universal": 15.0,
    })

    @field_validator('category_ttls')
    @classmethod
    def require_universal(cls, v: Dict[str, float]) -> Dict[str, float]:
        if "universal" not in v:
            v = {**v, "universal": 15.0}
        return v


class FileSearchConfig(BaseModel):
    result_cap: int = 100
    max_output_bytes: int = 10 * 1024 * 1024
    max_query_length: int = 100


class ApiConfig(BaseModel):
    host: str = "localhost"
    port: int = 8766


class HealthConfig(BaseModel):
    failure_threshold: int = 5
    recovery_timeout: float = 30.0


class Config(BaseModel):
    """Main configuration for the ContextSearch daemon."""

    search: SearchSettings = Field(default_factory=SearchSettings)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    files: FileSearchConfig = Field(default_factory=FileSearchConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    plugins_dir: Optional[Path] = None

    @field_validator('plugins_dir')
    @classmethod
    def expand_plugins_dir(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return None
        return Path(v).expanduser()

    @property
    def resolved_plugins_dir(self) -> Path:
        if self.plugins_dir is not None:
            return self.plugins_dir
        return Path.home() / "Documents" / "ContextSearch" / "plugins"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML, falling back to defaults."""
        if config_path is None:
            candidates = [
                Path("contextsearch.yaml"),
                Path.home() / ".config" / "contextsearch" / "config.yaml",
                Path("/etc/contextsearch/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, allow_unicode=True)
