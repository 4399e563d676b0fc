import os

import pytest

from stream_proxy import bootstrap
from stream_proxy.bootstrap import StartupOverrides, resolve_startup
from stream_proxy.errors import ConfigParseError
from stream_proxy.utils_tests.upstream_double import TEST_STREAM_HOST, write_config


def test_missing_config_is_created_with_defaults(tmp_path):
    path = str(tmp_path / "etc" / "config.json")

    runtime = resolve_startup(StartupOverrides(config_path=path))

    assert os.path.exists(path)
    assert (runtime.listen.host, runtime.listen.port) == ("0.0.0.0", 8000)
    assert runtime.stream_host == "http://127.0.0.1:8080"
    assert runtime.config.users == {"test": "123456"}


def test_file_values_are_used_without_overrides(config_path):
    runtime = resolve_startup(StartupOverrides(config_path=config_path))

    assert (runtime.listen.host, runtime.listen.port) == ("127.0.0.1", 8000)
    assert runtime.stream_host == TEST_STREAM_HOST
    assert runtime.mtime_ns == 1_000_000_000


def test_overrides_take_precedence(config_path):
    runtime = resolve_startup(
        StartupOverrides(
            config_path=config_path,
            host="10.0.0.5",
            port=9100,
            stream_host="https://cdn.example.com",
        )
    )

    assert (runtime.listen.host, runtime.listen.port) == ("10.0.0.5", 9100)
    assert runtime.stream_host == "https://cdn.example.com"


@pytest.mark.parametrize("stream_host", ["", "not a url", "ftp://media:21"])
def test_unusable_stream_host_is_rejected(tmp_path, stream_host):
    path = str(write_config(tmp_path / "config.json", stream_host=stream_host))

    with pytest.raises(ConfigParseError):
        resolve_startup(StartupOverrides(config_path=path))


def test_stream_host_override_rescues_missing_file_value(tmp_path):
    path = str(write_config(tmp_path / "config.json", stream_host=""))

    runtime = resolve_startup(
        StartupOverrides(config_path=path, stream_host="http://up:8080")
    )

    assert runtime.stream_host == "http://up:8080"


def test_overrides_from_env(monkeypatch):
    monkeypatch.setattr(bootstrap, "CONFIG_PATH", "/srv/stream/config.json")
    monkeypatch.setattr(bootstrap, "HOST", "")
    monkeypatch.setattr(bootstrap, "PORT", 9000)
    monkeypatch.setattr(bootstrap, "STREAM_HOST", "http://up:1")

    overrides = StartupOverrides.from_env()

    assert overrides == StartupOverrides(
        config_path="/srv/stream/config.json",
        host=None,
        port=9000,
        stream_host="http://up:1",
    )
