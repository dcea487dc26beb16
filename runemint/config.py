"""Shared configuration loader for runemint."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .amount import AmountError, parse_amount


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".runemint.yaml"
DEFAULT_RPC_PORT = 8332
DEFAULT_SERVER_URL = "http://127.0.0.1:80"
DEFAULT_WALLET = "ord"
TARGET_POSTAGE = 10_000
_CONFIG_PATH_OVERRIDE: Path | None = None


@dataclass
class RPCConfig:
    """Configuration container for Bitcoin Core RPC connection details."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = DEFAULT_RPC_PORT
    use_https: bool = False
    wallet: str | None = None

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass(frozen=True)
class MintContext:
    """Construction context for a mint: which wallet, which index, whether to wait for sync."""

    wallet: str = DEFAULT_WALLET
    no_sync: bool = False
    server_url: str = DEFAULT_SERVER_URL
    target_postage: int = TARGET_POSTAGE


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _resolve_path(config_path: str | Path | None) -> tuple[Path, bool]:
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )
    return path, explicit_path


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
        raise ConfigurationError(f"Expected {path} to contain a YAML object with 'rpc'/'mint' sections")
    return loaded


def _section(file_config: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


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


def _coerce_port(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid port in {source}: {raw}") from exc


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _env(env_map: Mapping[str, str], suffix: str) -> str | None:
    return env_map.get(f"BITCOIN_RPC_{suffix}") or env_map.get(f"RUNEMINT_RPC_{suffix}")


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme and not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    host = parsed.hostname or None
    port = parsed.port
    use_https = parsed.scheme.lower() == "https" if parsed.scheme else None
    return host, port, use_https


def _read_cookie(raw_path: str | None) -> tuple[str | None, str | None]:
    if not raw_path:
        return None, None
    path = Path(raw_path).expanduser()
    try:
        contents = path.read_text().strip()
    except OSError as exc:
        raise ConfigurationError(f"Unable to read RPC cookie file {path}: {exc}") from exc
    user, separator, password = contents.partition(":")
    if not separator:
        raise ConfigurationError(f"Malformed RPC cookie file {path}")
    return user, password


def load_rpc_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RPCConfig:
    """Load node RPC configuration from environment variables and optional YAML.

    Precedence is overrides, then ``BITCOIN_RPC_*`` (or ``RUNEMINT_RPC_*``)
    variables, then the ``rpc`` section of the config file. When no
    user/password pair is found a ``cookie_file`` is read instead.
    """

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    rpc_section = _section(file_config, "rpc", path)
    override_map = dict(overrides or {})

    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(override_map.get("endpoint"), _env(env_map, "ENDPOINT"), rpc_section.get("endpoint"))
    )

    resolved_user = _first_value(override_map.get("user"), _env(env_map, "USER"), rpc_section.get("user"))
    resolved_password = _first_value(
        override_map.get("password"), _env(env_map, "PASSWORD"), rpc_section.get("password")
    )
    if not resolved_user or not resolved_password:
        resolved_user, resolved_password = _read_cookie(
            _first_value(
                override_map.get("cookie_file"), _env(env_map, "COOKIE_FILE"), rpc_section.get("cookie_file")
            )
        )
    if not resolved_user or not resolved_password:
        raise ConfigurationError(
            "RPC credentials must be provided via BITCOIN_RPC_* environment variables, a cookie file, or a config file"
        )

    resolved_host = _first_value(
        override_map.get("host"), endpoint_host, _env(env_map, "HOST"), rpc_section.get("host"), "127.0.0.1"
    )
    resolved_port = _first_value(
        _coerce_port(override_map.get("port"), source="overrides"),
        _coerce_port(endpoint_port, source="endpoint"),
        _coerce_port(_env(env_map, "PORT"), source="environment"),
        _coerce_port(rpc_section.get("port"), source=f"{path} rpc.port"),
        DEFAULT_RPC_PORT,
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        _coerce_bool(_env(env_map, "USE_HTTPS")),
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    resolved_wallet = _first_value(override_map.get("wallet"), _env(env_map, "WALLET"), rpc_section.get("wallet"))

    return RPCConfig(
        user=resolved_user,
        password=resolved_password,
        host=resolved_host,
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=resolved_wallet,
    )


def load_mint_context(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> MintContext:
    """Load the wallet name, ord server URL, sync flag and default postage."""

    env_map = os.environ if env is None else env
    path, explicit_path = _resolve_path(config_path)
    file_config = _load_config_file(path, required=explicit_path)
    mint_section = _section(file_config, "mint", path)
    override_map = dict(overrides or {})

    wallet = _first_value(
        override_map.get("wallet"), env_map.get("RUNEMINT_WALLET"), mint_section.get("wallet"), DEFAULT_WALLET
    )
    server_url = _first_value(
        override_map.get("server_url"),
        env_map.get("RUNEMINT_SERVER_URL"),
        mint_section.get("server_url"),
        DEFAULT_SERVER_URL,
    )
    parsed = urlparse(server_url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid ord server URL: {server_url}")

    no_sync = _first_value(
        _coerce_bool(override_map.get("no_sync")),
        _coerce_bool(env_map.get("RUNEMINT_NO_SYNC")),
        _coerce_bool(mint_section.get("no_sync")),
        False,
    )

    raw_postage = _first_value(
        override_map.get("postage"), env_map.get("RUNEMINT_POSTAGE"), mint_section.get("postage")
    )
    target_postage = TARGET_POSTAGE
    if raw_postage is not None:
        try:
            target_postage = raw_postage if isinstance(raw_postage, int) else parse_amount(str(raw_postage))
        except AmountError as exc:
            raise ConfigurationError(f"Invalid default postage: {exc}") from exc

    return MintContext(
        wallet=str(wallet),
        no_sync=bool(no_sync),
        server_url=str(server_url).rstrip("/"),
        target_postage=target_postage,
    )
