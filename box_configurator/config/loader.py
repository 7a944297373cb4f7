"""
Configuration management and loading.

Handles NetSuite credentials, RESTlet deployments, retry settings and the
database location. Values come from an optional YAML file and are
overridden by environment variables. Everything is validated once at load
time and frozen afterwards.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from ..core.retry import RetryPolicy
from ..errors import ConfigError

DEFAULT_DB_PATH = "box_configurator.db"

CREDENTIAL_ENV_VARS = {
    "account_id": "NETSUITE_ACCOUNT_ID",
    "consumer_key": "NETSUITE_CONSUMER_KEY",
    "consumer_secret": "NETSUITE_CONSUMER_SECRET",
    "token_id": "NETSUITE_TOKEN_ID",
    "token_secret": "NETSUITE_TOKEN_SECRET",
    "restlet_base_url": "NETSUITE_RESTLET_BASE_URL",
}

DEPLOYMENT_DEFAULTS = {
    "item_search": ("customscript_box_item_search", "customdeploy_box_item_search"),
    "data_fetch": ("customscript_box_data_fetch", "customdeploy_box_data_fetch"),
    "estimate_writer": ("customscript_box_est_writer", "customdeploy_box_est_writer"),
}

DEPLOYMENT_ENV_PREFIX = {
    "item_search": "NS_ITEM_SEARCH",
    "data_fetch": "NS_DATA_FETCH",
    "estimate_writer": "NS_ESTIMATE_WRITER",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class NetSuiteCredentials:
    """Token-based authentication credentials for NetSuite RESTlets."""
    account_id: str
    consumer_key: str
    consumer_secret: str
    token_id: str
    token_secret: str
    restlet_base_url: str

    def __post_init__(self):
        """Fail fast when any credential is absent."""
        missing = [name for name in CREDENTIAL_ENV_VARS if not getattr(self, name)]
        if missing:
            env_names = ", ".join(CREDENTIAL_ENV_VARS[name] for name in missing)
            raise ConfigError(f"Missing NetSuite credentials: {env_names}")
        if not self.restlet_base_url.startswith(("https://", "http://")):
            raise ConfigError("restlet_base_url must be an http(s) URL")

    def __repr__(self) -> str:
        return f"NetSuiteCredentials(account_id={self.account_id!r}, restlet_base_url={self.restlet_base_url!r})"


@dataclass(frozen=True)
class RestletDeployment:
    """Script/deploy identifiers of one RESTlet."""
    script_id: str
    deploy_id: str

    def __post_init__(self):
        if not self.script_id or not self.deploy_id:
            raise ConfigError("RESTlet deployment needs both script_id and deploy_id")


@dataclass(frozen=True)
class NetSuiteConfig:
    """NetSuite connection settings."""
    mock: bool
    credentials: Optional[NetSuiteCredentials]
    deployments: Dict[str, RestletDeployment] = field(default_factory=dict)

    def __post_init__(self):
        """Live mode needs credentials."""
        if not self.mock and self.credentials is None:
            raise ConfigError("NetSuite credentials are required unless mock mode is enabled")

    def deployment(self, name: str) -> RestletDeployment:
        if name in self.deployments:
            return self.deployments[name]
        script_id, deploy_id = DEPLOYMENT_DEFAULTS[name]
        return RestletDeployment(script_id=script_id, deploy_id=deploy_id)


@dataclass(frozen=True)
class Settings:
    """Complete application settings."""
    netsuite: NetSuiteConfig
    retry: RetryPolicy
    db_path: str = DEFAULT_DB_PATH


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load and validate settings from an optional YAML file and the environment.

    Args:
        path: Optional path to a YAML settings file
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If ``path`` is given but doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigError: If configuration is invalid
    """
    env = os.environ if environ is None else environ
    raw_config = _read_yaml(path) if path else {}

    allowed_top_keys = {"netsuite", "retry", "database"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigError(f"Unknown configuration keys: {unknown_keys}")

    netsuite = _parse_netsuite(_section(raw_config, "netsuite"), env)
    retry = _parse_retry(_section(raw_config, "retry"))

    database = _section(raw_config, "database")
    unknown_db_keys = set(database.keys()) - {"path"}
    if unknown_db_keys:
        raise ConfigError(f"Unknown database keys: {unknown_db_keys}")
    db_path = env.get("BOX_CONFIGURATOR_DB") or database.get("path") or DEFAULT_DB_PATH

    return Settings(netsuite=netsuite, retry=retry, db_path=str(db_path))


def _read_yaml(path: str) -> Dict:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in settings file {path}: {e}")

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Settings file must contain a mapping")
    return raw_config


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a dictionary")
    return data


def _parse_netsuite(data: Dict, env: Mapping[str, str]) -> NetSuiteConfig:
    """Parse the netsuite section, letting environment variables win.

    Args:
        data: netsuite section of the YAML file
        env: Environment mapping

    Returns:
        Validated NetSuiteConfig

    Raises:
        ConfigError: If configuration is invalid
    """
    allowed_keys = {"mock", "deployments"} | set(CREDENTIAL_ENV_VARS)
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in netsuite: {unknown_keys}")

    mock = bool(data.get("mock", False))
    if "NETSUITE_MOCK" in env:
        mock = env["NETSUITE_MOCK"].strip().lower() in _TRUE_VALUES

    values = {
        name: (env.get(env_name) or data.get(name) or "")
        for name, env_name in CREDENTIAL_ENV_VARS.items()
    }
    # Mock mode ignores a partial credential set
    if not mock or all(values.values()):
        credentials = NetSuiteCredentials(**{k: str(v).strip() for k, v in values.items()})
    else:
        credentials = None

    return NetSuiteConfig(
        mock=mock,
        credentials=credentials,
        deployments=_parse_deployments(data.get("deployments") or {}, env),
    )


def _parse_deployments(data: Dict, env: Mapping[str, str]) -> Dict[str, RestletDeployment]:
    if not isinstance(data, dict):
        raise ConfigError("'netsuite.deployments' must be a dictionary")
    unknown_keys = set(data.keys()) - set(DEPLOYMENT_DEFAULTS)
    if unknown_keys:
        raise ConfigError(f"Unknown RESTlet deployments: {unknown_keys}")

    deployments = {}
    for name, (default_script, default_deploy) in DEPLOYMENT_DEFAULTS.items():
        entry = data.get(name) or {}
        if not isinstance(entry, dict):
            raise ConfigError(f"Deployment '{name}' must be a dictionary")
        prefix = DEPLOYMENT_ENV_PREFIX[name]
        deployments[name] = RestletDeployment(
            script_id=env.get(f"{prefix}_SCRIPT") or entry.get("script_id") or default_script,
            deploy_id=env.get(f"{prefix}_DEPLOY") or entry.get("deploy_id") or default_deploy,
        )
    return deployments


def _parse_retry(data: Dict) -> RetryPolicy:
    """Parse and validate retry settings.

    Args:
        data: retry section of the YAML file

    Returns:
        RetryPolicy with the default retry predicate

    Raises:
        ConfigError: If configuration is invalid
    """
    allowed_keys = {"max_retries", "base_delay_ms", "max_delay_ms"}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in retry: {unknown_keys}")

    defaults = RetryPolicy()
    values = {}
    for key in allowed_keys:
        value = data.get(key, getattr(defaults, key))
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"'{key}' in retry must be a non-negative integer")
        values[key] = value

    try:
        return RetryPolicy(**values)
    except ValueError as e:
        raise ConfigError(str(e))
