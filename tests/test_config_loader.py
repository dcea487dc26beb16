from pathlib import Path

import pytest

from runemint.config import (
    DEFAULT_SERVER_URL,
    TARGET_POSTAGE,
    ConfigurationError,
    MintContext,
    RPCConfig,
    load_mint_context,
    load_rpc_config,
    set_default_config_path,
)


@pytest.fixture(autouse=True)
def reset_config_path():
    set_default_config_path(None)
    yield
    set_default_config_path(None)


def test_load_rpc_config_prefers_environment_over_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        rpc:
          user: file_user
          password: file_pass
          host: filehost
          port: 1111
          use_https: true
          wallet: filewallet
          endpoint: http://filehost:2222
        """
    )

    env_map = {
        "BITCOIN_RPC_USER": "env_user",
        "BITCOIN_RPC_PASSWORD": "env_pass",
        "BITCOIN_RPC_ENDPOINT": "https://envhost:3333",
        "BITCOIN_RPC_WALLET": "envwallet",
        "BITCOIN_RPC_USE_HTTPS": "1",
    }

    config = load_rpc_config(config_path=config_path, env=env_map)

    assert isinstance(config, RPCConfig)
    assert config.user == "env_user"
    assert config.password == "env_pass"
    assert config.host == "envhost"
    assert config.port == 3333
    assert config.use_https is True
    assert config.wallet == "envwallet"
    assert config.base_url == "https://envhost:3333"


def test_load_rpc_config_reads_yaml_when_env_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / ".runemint.yaml"
    monkeypatch.setattr("runemint.config.DEFAULT_CONFIG_PATH", config_path)

    config_path.write_text(
        """
        rpc:
          user: yaml_user
          password: yaml_pass
          host: yamlhost
          port: 4545
          use_https: false
          wallet: yamlwallet
        """
    )

    config = load_rpc_config(env={})

    assert config.user == "yaml_user"
    assert config.password == "yaml_pass"
    assert config.host == "yamlhost"
    assert config.port == 4545
    assert config.use_https is False
    assert config.wallet == "yamlwallet"
    assert config.base_url == "http://yamlhost:4545"


def test_runemint_prefixed_environment_is_accepted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("runemint.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    config = load_rpc_config(
        env={"RUNEMINT_RPC_USER": "alice", "RUNEMINT_RPC_PASSWORD": "secret", "RUNEMINT_RPC_PORT": "18443"}
    )

    assert (config.user, config.password, config.port) == ("alice", "secret", 18443)
    assert config.host == "127.0.0.1"


def test_overrides_win_over_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("runemint.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    config = load_rpc_config(
        env={"BITCOIN_RPC_USER": "env_user", "BITCOIN_RPC_PASSWORD": "env_pass", "BITCOIN_RPC_HOST": "envhost"},
        overrides={"user": "flag_user", "host": None, "port": 18332},
    )

    assert config.user == "flag_user"
    assert config.password == "env_pass"
    assert config.host == "envhost"
    assert config.port == 18332


def test_cookie_file_supplies_credentials(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    cookie = tmp_path / ".cookie"
    config_path.write_text(f"rpc:\n  cookie_file: {cookie}\n")
    cookie.write_text("__cookie__:s3cret\n")

    config = load_rpc_config(config_path=config_path, env={})

    assert config.user == "__cookie__"
    assert config.password == "s3cret"


def test_malformed_cookie_file(tmp_path: Path) -> None:
    cookie = tmp_path / ".cookie"
    cookie.write_text("no-separator")
    config_path = tmp_path / "config.yaml"
    config_path.write_text("rpc: {}\n")

    with pytest.raises(ConfigurationError, match="Malformed"):
        load_rpc_config(config_path=config_path, env={"BITCOIN_RPC_COOKIE_FILE": str(cookie)})


def test_load_rpc_config_requires_credentials(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("rpc: {}\n")

    with pytest.raises(ConfigurationError):
        load_rpc_config(config_path=config_path, env={})


def test_invalid_port_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("rpc:\n  user: u\n  password: p\n  port: abc\n")

    with pytest.raises(ConfigurationError, match="Invalid port"):
        load_rpc_config(config_path=config_path, env={})


def test_explicit_config_path_must_exist(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_rpc_config(config_path=tmp_path / "missing.yaml", env={})


def test_config_must_be_a_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        load_mint_context(config_path=config_path, env={})


def test_mint_context_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("{}\n")

    context = load_mint_context(config_path=config_path, env={})

    assert context == MintContext()
    assert context.wallet == "ord"
    assert context.server_url == DEFAULT_SERVER_URL
    assert context.no_sync is False
    assert context.target_postage == TARGET_POSTAGE == 10_000


def test_mint_context_layers(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        mint:
          wallet: yamlwallet
          server_url: http://ord.local:8080/
          no_sync: true
          postage: 0.0002btc
        """
    )

    from_file = load_mint_context(config_path=config_path, env={})
    assert from_file == MintContext(
        wallet="yamlwallet", no_sync=True, server_url="http://ord.local:8080", target_postage=20_000
    )

    from_env = load_mint_context(
        config_path=config_path,
        env={"RUNEMINT_WALLET": "envwallet", "RUNEMINT_NO_SYNC": "0", "RUNEMINT_POSTAGE": "546sat"},
        overrides={"server_url": "https://ord.example"},
    )
    assert from_env == MintContext(
        wallet="envwallet", no_sync=False, server_url="https://ord.example", target_postage=546
    )


@pytest.mark.parametrize("server_url", ["ftp://ord.local", "not a url"])
def test_mint_context_rejects_bad_server_url(tmp_path: Path, server_url: str) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("{}\n")

    with pytest.raises(ConfigurationError, match="Invalid ord server URL"):
        load_mint_context(config_path=config_path, env={"RUNEMINT_SERVER_URL": server_url})


def test_mint_context_rejects_bad_postage(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("mint:\n  postage: lots\n")

    with pytest.raises(ConfigurationError, match="postage"):
        load_mint_context(config_path=config_path, env={})
