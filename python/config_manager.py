"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class ApiConfig:
    """HTTP surface configuration"""
    title: str = "Postcode Hierarchy API"
    version: str = "1.0.0"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    allowed_hosts: List[str] = field(default_factory=list)  # empty disables the allowlist
    docs_url: Optional[str] = "/api/docs"
    redoc_url: Optional[str] = "/api/redoc"


@dataclass
class PaginationConfig:
    """Paging limits shared by every listing endpoint"""
    default_limit: int = 20
    max_limit: int = 100
    query_result_cap: int = 80


@dataclass
class LookupConfig:
    """Third-party postcode detail lookup"""
    base_url: str = ""
    timeout_seconds: float = 10.0
    output: str = "json"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    security_log_dir: str = "logs/security"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False
    create_tables_on_startup: bool = False


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.api: ApiConfig = ApiConfig()
        self.pagination: PaginationConfig = PaginationConfig()
        self.lookup: LookupConfig = LookupConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
        self._apply_env_overrides()
        self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_api()
        self._parse_pagination()
        self._parse_lookup()
        self._parse_logging()
        self._parse_database()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._section('api')
        self.api = ApiConfig(
            title=cfg.get('title', self.api.title),
            version=cfg.get('version', self.api.version),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins),
            allowed_hosts=cfg.get('allowed_hosts', self.api.allowed_hosts),
            docs_url=cfg.get('docs_url', self.api.docs_url),
            redoc_url=cfg.get('redoc_url', self.api.redoc_url)
        )

    def _parse_pagination(self) -> None:
        """Parse pagination configuration"""
        cfg = self._section('pagination')
        self.pagination = PaginationConfig(
            default_limit=cfg.get('default_limit', 20),
            max_limit=cfg.get('max_limit', 100),
            query_result_cap=cfg.get('query_result_cap', 80)
        )

    def _parse_lookup(self) -> None:
        """Parse external lookup configuration"""
        cfg = self._section('lookup')
        self.lookup = LookupConfig(
            base_url=cfg.get('base_url', self.lookup.base_url),
            timeout_seconds=cfg.get('timeout_seconds', 10.0),
            output=cfg.get('output', 'json')
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            format=cfg.get('format', self.logging.format),
            security_log_dir=cfg.get('security_log_dir', self.logging.security_log_dir)
        )

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            url=cfg.get('url', self.database.url),
            pool_size=cfg.get('pool_size', self.database.pool_size),
            max_overflow=cfg.get('max_overflow', self.database.max_overflow),
            echo=cfg.get('echo', False),
            create_tables_on_startup=cfg.get('create_tables_on_startup', False)
        )

    def _apply_env_overrides(self) -> None:
        """Deployment secrets come from the environment, never the YAML file"""
        lookup_url = os.getenv("LOOKUP_API_URL")
        if lookup_url:
            self.lookup.base_url = lookup_url

        database_url = os.getenv("DATABASE_URL")
        if database_url:
            self.database.url = database_url

        api_domain = os.getenv("API_DOMAIN")
        if api_domain:
            self.api.allowed_hosts = [host.strip() for host in api_domain.split(",") if host.strip()]

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (secrets omitted)"""
        return {
            'api': {
                'title': self.api.title,
                'version': self.api.version,
                'cors_origins': self.api.cors_origins,
                'allowed_hosts': self.api.allowed_hosts
            },
            'pagination': {
                'default_limit': self.pagination.default_limit,
                'max_limit': self.pagination.max_limit,
                'query_result_cap': self.pagination.query_result_cap
            },
            'lookup': {
                'configured': bool(self.lookup.base_url),
                'timeout_seconds': self.lookup.timeout_seconds,
                'output': self.lookup.output
            },
            'logging': {
                'level': self.logging.level
            },
            'database': {
                'configured': bool(self.database.url),
                'echo': self.database.echo,
                'create_tables_on_startup': self.database.create_tables_on_startup
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        pagination = self.pagination
        for name in ('default_limit', 'max_limit', 'query_result_cap'):
            value = getattr(pagination, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"pagination.{name} must be a positive integer, got {value!r}")
        if pagination.default_limit > pagination.max_limit:
            raise ConfigurationError(
                f"pagination.default_limit ({pagination.default_limit}) "
                f"exceeds max_limit ({pagination.max_limit})"
            )

        if not isinstance(self.lookup.timeout_seconds, (int, float)) or self.lookup.timeout_seconds <= 0:
            raise ConfigurationError(
                f"lookup.timeout_seconds must be positive, got {self.lookup.timeout_seconds!r}"
            )

        if not isinstance(logging.getLevelName(str(self.logging.level).upper()), int):
            raise ConfigurationError(f"Unknown logging level: {self.logging.level}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
