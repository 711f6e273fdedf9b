"""Configuration management for QueryLab.

This module handles loading configuration from YAML files and environment variables.
Environment variables take precedence over YAML configuration.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml
from dotenv import load_dotenv


class Settings:
    """Singleton configuration manager for the application."""

    _instance: Optional['Settings'] = None
    _config: Dict[str, Any] = {}

    # Settings that must be present before the matching client can be built
    REQUIRED_FIELDS: Dict[str, List[Tuple[str, str]]] = {
        "openai": [("llm.api_key", "OPENAI_API_KEY")],
        "azure": [
            ("llm.api_key", "AZURE_OPENAI_API_KEY"),
            ("llm.azure.endpoint", "AZURE_OPENAI_ENDPOINT"),
        ],
        "bigquery": [
            ("bigquery.project_id", "GCP_PROJECT_ID"),
            ("bigquery.dataset", "BIGQUERY_DATASET"),
        ],
    }

    def __new__(cls):
        """Ensure only one instance of Settings exists."""
        if cls._instance is None:
            cls._instance = super(Settings, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        """Initialize configuration by loading from YAML and environment."""
        # Load environment variables from .env file if it exists
        load_dotenv()

        config_path = Path(__file__).parent / "config.yaml"
        if config_path.exists():
            with open(config_path, 'r') as f:
                self._config = yaml.safe_load(f) or {}
        else:
            self._config = {}

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override configuration with environment variables."""
        # LLM overrides
        if provider := os.getenv("LLM_PROVIDER"):
            self._config.setdefault("llm", {})["provider"] = provider.lower()
        if api_key := os.getenv("OPENAI_API_KEY"):
            self._config.setdefault("llm", {})["api_key"] = api_key
        if azure_key := os.getenv("AZURE_OPENAI_API_KEY"):
            # Azure credentials win only when the Azure provider is selected
            if self.get("llm.provider") == "azure" or not self.get("llm.api_key"):
                self._config.setdefault("llm", {})["api_key"] = azure_key
        if endpoint := os.getenv("AZURE_OPENAI_ENDPOINT"):
            self._config.setdefault("llm", {}).setdefault("azure", {})["endpoint"] = endpoint
        if api_version := os.getenv("AZURE_OPENAI_API_VERSION"):
            self._config.setdefault("llm", {}).setdefault("azure", {})["api_version"] = api_version

        # BigQuery overrides
        if project_id := os.getenv("GCP_PROJECT_ID"):
            self._config.setdefault("bigquery", {})["project_id"] = project_id
        if dataset := os.getenv("BIGQUERY_DATASET"):
            self._config.setdefault("bigquery", {})["dataset"] = dataset
        if location := os.getenv("BIGQUERY_LOCATION"):
            self._config.setdefault("bigquery", {})["location"] = location
        if credentials_path := os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
            self._config.setdefault("bigquery", {})["credentials_path"] = credentials_path

        # Storage overrides
        if data_dir := os.getenv("QUERYLAB_DATA_DIR"):
            self._config.setdefault("storage", {})["data_dir"] = data_dir
        if seed_file := os.getenv("QUERYLAB_KNOWLEDGE_BASE"):
            self._config.setdefault("knowledge_base", {})["seed_file"] = seed_file

        if log_level := os.getenv("LOG_LEVEL"):
            self._config.setdefault("logging", {})["level"] = log_level

    def missing_fields(self, group: str) -> List[str]:
        """List required settings of a group that are not configured.

        Args:
            group: One of the keys of REQUIRED_FIELDS ('openai', 'azure', 'bigquery')

        Returns:
            Human-readable descriptions of the missing settings
        """
        missing = []
        for field_path, env_var in self.REQUIRED_FIELDS.get(group, []):
            if not self.get(field_path):
                missing.append(f"{field_path} (env: {env_var})")
        return missing

    def require(self, key_path: str, env_var: Optional[str] = None) -> Any:
        """Get a configuration value that must be present.

        Args:
            key_path: Dot-separated path to configuration value
            env_var: Environment variable that can provide the value

        Returns:
            Configuration value

        Raises:
            ConfigurationError: If the value is not configured
        """
        value = self.get(key_path)
        if value in (None, ""):
            # Imported here to keep settings free of package-level imports
            from ..utils.exceptions import ConfigurationError

            hint = f" (env: {env_var})" if env_var else ""
            raise ConfigurationError(
                f"Missing required configuration: {key_path}{hint}. "
                "Please set it in config.yaml or as an environment variable."
            )
        return value

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'execution.max_retries').

        Args:
            key_path: Dot-separated path to configuration value
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
                if value is None:
                    return default
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get an entire configuration section.

        Args:
            section: Top-level section name (e.g., 'llm', 'bigquery')

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to configuration value
            value: Value to set
        """
        keys = key_path.split('.')
        config = self._config

        for key in keys[:-1]:
            config = config.setdefault(key, {})

        config[keys[-1]] = value

    def reload(self) -> None:
        """Reload configuration from file and environment."""
        self._initialize()

    @property
    def llm(self) -> Dict[str, Any]:
        """Get completion service configuration."""
        return self.get_section("llm")

    @property
    def bigquery(self) -> Dict[str, Any]:
        """Get BigQuery configuration."""
        return self.get_section("bigquery")

    @property
    def execution(self) -> Dict[str, Any]:
        """Get execution retry configuration."""
        return self.get_section("execution")

    @property
    def knowledge_base(self) -> Dict[str, Any]:
        """Get knowledge base configuration."""
        return self.get_section("knowledge_base")

    @property
    def conversation(self) -> Dict[str, Any]:
        """Get conversation memory configuration."""
        return self.get_section("conversation")

    @property
    def learning(self) -> Dict[str, Any]:
        """Get learning store configuration."""
        return self.get_section("learning")

    @property
    def storage(self) -> Dict[str, Any]:
        """Get storage configuration."""
        return self.get_section("storage")

    @property
    def logging(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self.get_section("logging")


# Global settings instance
settings = Settings()
