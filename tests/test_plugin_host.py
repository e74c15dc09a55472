"""Tests for PluginHost discovery + launch + shutdown."""

from __future__ import annotations

import threading
import time

import pytest

from plughost.config.schema import Config
from plughost.host import PluginHost
from plughost.utils.exceptions import LaunchCancelled, PluginNotFound

READY = """
import time
print("1|1|tcp|127.0.0.1:5001|grpc", flush=True)
time.sleep(30)
"""


def _config(tmp_path, *dirs) -> Config:
    cfg = Config()
    cfg.discovery.env_var = "PLUGHOST_TEST_UNSET_PATH"
    cfg.discovery.paths = [str(d) for d in dirs]
    cfg.discovery.install_dir = str(tmp_path / "install")
    cfg.launch.startup_timeout_seconds = 5.0
    cfg.launch.terminate_grace_seconds = 1.0
    return cfg


def test_search_path_from_config(tmp_path, monkeypatch):
    monkeypatch.setenv("PLUGHOST_TEST_UNSET_PATH", str(tmp_path / "env"))
    cfg = _config(tmp_path, tmp_path / "a")
    cfg.discovery.override_dir = str(tmp_path / "override")
    host = PluginHost(cfg)
    assert host.search_path() == [tmp_path / "override", tmp_path / "a", tmp_path / "env", tmp_path / "install"]
    cfg.discovery.include_install_dir = False
    assert host.search_path()[-1] == tmp_path / "env"


def test_discover_and_candidates(tmp_path, make_plugin):
    a, b = tmp_path / "a", tmp_path / "b"
    make_plugin(READY, name="svc", directory=a)
    make_plugin(READY, name="svc", directory=b)
    host = PluginHost(_config(tmp_path, a, b))
    assert host.discover("svc").search_dir == a
    assert [d.search_dir for d in host.candidates("svc")] == [a, b]
    with pytest.raises(PluginNotFound):
        host.discover("other")


@pytest.mark.subprocess
def test_launch_registers_and_shutdown_terminates(tmp_path, make_plugin):
    a = tmp_path / "a"
    make_plugin(READY, name="svc", directory=a)
    host = PluginHost(_config(tmp_path, a))
    plugin = host.launch("svc")
    assert plugin.descriptor is not None
    assert plugin.descriptor.handshake == plugin.handshake
    assert host.live() == [plugin]
    host.shutdown()
    assert plugin.poll() is not None
    assert host.live() == []
    with pytest.raises(RuntimeError):
        host.launch("svc")


@pytest.mark.subprocess
def test_shutdown_cancels_pending_launch(tmp_path, make_plugin):
    a = tmp_path / "a"
    make_plugin("import time\ntime.sleep(30)\n", name="slow", directory=a)
    cfg = _config(tmp_path, a)
    cfg.launch.startup_timeout_seconds = 20.0
    host = PluginHost(cfg)
    errors: list[Exception] = []

    def _launch() -> None:
        try:
            host.launch("slow")
        except LaunchCancelled as exc:
            errors.append(exc)

    worker = threading.Thread(target=_launch)
    worker.start()
    time.sleep(0.5)
    host.shutdown()
    worker.join(10)
    assert not worker.is_alive()
    assert len(errors) == 1


@pytest.mark.subprocess
def test_release_single_plugin(tmp_path, make_plugin):
    a = tmp_path / "a"
    make_plugin(READY, name="svc", directory=a)
    with PluginHost(_config(tmp_path, a)) as host:
        plugin = host.launch("svc")
        host.release(plugin)
        assert host.live() == []
        assert plugin.poll() is not None
