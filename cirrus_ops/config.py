"""Shared configuration loader for the masternode tooling."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".cirrus-ops.yaml"

ENV_PREFIX = "CIRRUS_OPS_"
DEFAULT_MAINCHAIN_PORT = 17103
DEFAULT_SIDECHAIN_PORT = 37223


@dataclass(frozen=True)
class NodeConfig:
    """Connection details for one node's REST API."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_MAINCHAIN_PORT
    use_https: bool = False
    timeout: float = 30.0

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass(frozen=True)
class WalletConfig:
    name: str | None = None
    account: str = "account 0"
    password: str | None = None


@dataclass(frozen=True)
class MonitorConfig:
    public_key: str | None = None
    minute_update_interval: int = 5
    hours_between_updates: int = 6
    inactivity_threshold_minutes: int = 60


@dataclass(frozen=True)
class ConsolidationConfig:
    min_confirmations: int = 10
    batch_size: int = 950
    fee: Decimal = Decimal("0.01")
    destination_address: str | None = None
    change_policy: str | None = None


@dataclass(frozen=True)
class CrossChainConfig:
    mainchain_address: str | None = None
    federation_address: str | None = None
    fee: Decimal = Decimal("0.01")
    min_confirmations: int = 100
    batch_size: int = 950


@dataclass(frozen=True)
class NotifyConfig:
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_starttls: bool = True
    mail_from: str | None = None
    mail_to: str | None = None
    webhook_url: str | None = None


@dataclass(frozen=True)
class OperatorConfig:
    """Everything a command needs, constructed once at startup."""

    mainchain: NodeConfig = field(default_factory=NodeConfig)
    sidechain: NodeConfig = field(
        default_factory=lambda: NodeConfig(port=DEFAULT_SIDECHAIN_PORT)
    )
    wallet: WalletConfig = field(default_factory=WalletConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    cross_chain: CrossChainConfig = field(default_factory=CrossChainConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    peers: tuple[str, ...] = ()


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc


def _coerce_decimal(raw: Any, *, source: str) -> Decimal | None:
    if raw is None:
        return None
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ConfigurationError(f"Invalid amount in {source}: {raw}") from exc
    if not value.is_finite():
        raise ConfigurationError(f"Invalid amount in {source}: {raw}")
    if value < 0:
        raise ConfigurationError(f"{source} must not be negative")
    return value


def _check_minimum(value: int, minimum: int, *, source: str) -> int:
    if value < minimum:
        raise ConfigurationError(f"{source} must be at least {minimum}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid node endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    return host, port, use_https


def _node_config(
    section: Mapping[str, Any],
    *,
    env_endpoint: str | None,
    override_endpoint: str | None,
    default_port: int,
    source: str,
) -> NodeConfig:
    endpoint_host, endpoint_port, endpoint_https = _parse_endpoint(
        _first_value(override_endpoint, env_endpoint, section.get("endpoint"))
    )
    return NodeConfig(
        host=_first_value(endpoint_host, section.get("host"), "127.0.0.1"),
        port=_first_value(
            endpoint_port,
            _coerce_int(section.get("port"), source=f"{source}.port"),
            default_port,
        ),
        use_https=bool(
            _first_value(endpoint_https, _coerce_bool(section.get("use_https")), False)
        ),
        timeout=float(_first_value(section.get("timeout"), 30.0)),
    )


def _env(env_map: Mapping[str, str], name: str) -> str | None:
    return env_map.get(ENV_PREFIX + name) or None


def load_operator_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    secrets: Mapping[str, Any] | None = None,
) -> OperatorConfig:
    """Load operator configuration from YAML, environment and overrides.

    Precedence is ``overrides`` > environment (``CIRRUS_OPS_*``) > ``secrets``
    (decrypted credentials file) > YAML file > built-in defaults. When the YAML
    file names a ``credentials_file`` and no ``secrets`` mapping is passed in,
    the caller is expected to decrypt it first; see
    :func:`cirrus_ops.credentials.load_config_with_credentials`.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH
    file_config = _load_config_file(path, required=config_path is not None)
    override_map = dict(overrides or {})
    secret_map = dict(secrets or {})

    mainchain = _node_config(
        _section(file_config, "mainchain", path),
        env_endpoint=_env(env_map, "MAINCHAIN_URL"),
        override_endpoint=override_map.get("mainchain_url"),
        default_port=DEFAULT_MAINCHAIN_PORT,
        source="mainchain",
    )
    sidechain = _node_config(
        _section(file_config, "sidechain", path),
        env_endpoint=_env(env_map, "SIDECHAIN_URL"),
        override_endpoint=override_map.get("sidechain_url"),
        default_port=DEFAULT_SIDECHAIN_PORT,
        source="sidechain",
    )

    wallet_section = _section(file_config, "wallet", path)
    wallet = WalletConfig(
        name=_first_value(
            override_map.get("wallet_name"),
            _env(env_map, "WALLET_NAME"),
            secret_map.get("wallet_name"),
            wallet_section.get("name"),
        ),
        account=_first_value(
            override_map.get("wallet_account"),
            _env(env_map, "WALLET_ACCOUNT"),
            wallet_section.get("account"),
            "account 0",
        ),
        password=_first_value(
            override_map.get("wallet_password"),
            _env(env_map, "WALLET_PASSWORD"),
            secret_map.get("wallet_password"),
            wallet_section.get("password"),
        ),
    )

    monitor_section = _section(file_config, "monitor", path)
    monitor = MonitorConfig(
        public_key=_first_value(
            override_map.get("public_key"),
            _env(env_map, "PUBLIC_KEY"),
            secret_map.get("public_key"),
            monitor_section.get("public_key"),
        ),
        minute_update_interval=_first_value(
            _coerce_int(
                monitor_section.get("minute_update_interval"),
                source="monitor.minute_update_interval",
            ),
            5,
        ),
        hours_between_updates=_first_value(
            _coerce_int(
                monitor_section.get("hours_between_updates"),
                source="monitor.hours_between_updates",
            ),
            6,
        ),
        inactivity_threshold_minutes=_first_value(
            _coerce_int(
                monitor_section.get("inactivity_threshold_minutes"),
                source="monitor.inactivity_threshold_minutes",
            ),
            60,
        ),
    )
    _check_minimum(monitor.minute_update_interval, 1, source="monitor.minute_update_interval")
    _check_minimum(monitor.hours_between_updates, 1, source="monitor.hours_between_updates")
    _check_minimum(
        monitor.inactivity_threshold_minutes, 0, source="monitor.inactivity_threshold_minutes"
    )
    if (monitor.hours_between_updates * 60) % monitor.minute_update_interval:
        raise ConfigurationError(
            "monitor.hours_between_updates must be a whole number of update intervals"
        )

    consolidation_section = _section(file_config, "consolidation", path)
    consolidation = ConsolidationConfig(
        min_confirmations=_first_value(
            _coerce_int(
                consolidation_section.get("min_confirmations"),
                source="consolidation.min_confirmations",
            ),
            10,
        ),
        batch_size=_first_value(
            _coerce_int(
                consolidation_section.get("batch_size"), source="consolidation.batch_size"
            ),
            950,
        ),
        fee=_first_value(
            _coerce_decimal(consolidation_section.get("fee"), source="consolidation.fee"),
            Decimal("0.01"),
        ),
        destination_address=_first_value(
            override_map.get("destination_address"),
            consolidation_section.get("destination_address"),
        ),
        change_policy=_first_value(
            override_map.get("change_policy"),
            _env(env_map, "CHANGE_POLICY"),
            consolidation_section.get("change_policy"),
        ),
    )

    _check_minimum(consolidation.batch_size, 1, source="consolidation.batch_size")
    _check_minimum(consolidation.min_confirmations, 0, source="consolidation.min_confirmations")

    cross_section = _section(file_config, "cross_chain", path)
    cross_chain = CrossChainConfig(
        mainchain_address=_first_value(
            override_map.get("mainchain_address"),
            _env(env_map, "MAINCHAIN_ADDRESS"),
            secret_map.get("mainchain_address"),
            cross_section.get("mainchain_address"),
        ),
        federation_address=cross_section.get("federation_address"),
        fee=_first_value(
            _coerce_decimal(cross_section.get("fee"), source="cross_chain.fee"),
            Decimal("0.01"),
        ),
        min_confirmations=_first_value(
            _coerce_int(
                cross_section.get("min_confirmations"),
                source="cross_chain.min_confirmations",
            ),
            100,
        ),
        batch_size=_first_value(
            _coerce_int(cross_section.get("batch_size"), source="cross_chain.batch_size"),
            950,
        ),
    )

    _check_minimum(cross_chain.batch_size, 1, source="cross_chain.batch_size")
    _check_minimum(cross_chain.min_confirmations, 0, source="cross_chain.min_confirmations")

    notify_section = _section(file_config, "notify", path)
    notify = NotifyConfig(
        smtp_host=notify_section.get("smtp_host"),
        smtp_port=_first_value(
            _coerce_int(notify_section.get("smtp_port"), source="notify.smtp_port"), 587
        ),
        smtp_user=_first_value(
            secret_map.get("smtp_user"), notify_section.get("smtp_user")
        ),
        smtp_password=_first_value(
            _env(env_map, "SMTP_PASSWORD"),
            secret_map.get("smtp_password"),
            notify_section.get("smtp_password"),
        ),
        smtp_starttls=bool(
            _first_value(_coerce_bool(notify_section.get("smtp_starttls")), True)
        ),
        mail_from=notify_section.get("mail_from"),
        mail_to=_first_value(secret_map.get("mail_to"), notify_section.get("mail_to")),
        webhook_url=_first_value(
            _env(env_map, "WEBHOOK_URL"),
            secret_map.get("webhook_url"),
            notify_section.get("webhook_url"),
        ),
    )

    raw_peers = file_config.get("peers") or []
    if not isinstance(raw_peers, list):
        raise ConfigurationError(f"Expected 'peers' to be a list in {path}")

    return OperatorConfig(
        mainchain=mainchain,
        sidechain=sidechain,
        wallet=wallet,
        monitor=monitor,
        consolidation=consolidation,
        cross_chain=cross_chain,
        notify=notify,
        peers=tuple(str(peer) for peer in raw_peers),
    )


def credentials_path_from_file(config_path: str | Path | None = None) -> Path | None:
    """Return the ``credentials_file`` named in the YAML config, if any."""

    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH
    file_config = _load_config_file(path, required=False)
    raw = file_config.get("credentials_file")
    if not raw:
        return None
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = path.parent / candidate
    return candidate
