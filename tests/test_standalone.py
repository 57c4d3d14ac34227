"""
Tests for StandaloneRunner
"""
import pytest
from unittest.mock import Mock

from conftest import FakeLifecycle, FakeProbe
from nacos_setup.cluster_orchestrator.standalone import StandaloneRunner
from nacos_setup.errors import NodeStartError
from nacos_setup.models import StandaloneOptions
from nacos_setup.utils.properties import read_properties


def make_runner(package_manager, probe, lifecycle, tmp_path, sleep=None):
    return StandaloneRunner(
        package_manager=package_manager,
        probe=probe,
        lifecycle=lifecycle,
        java_finder=None,
        sleep=sleep or Mock(),
        global_datasource_file=str(tmp_path / "default.properties"),
    )


def standalone_options(tmp_path, **overrides):
    values = dict(base_dir=str(tmp_path / "nacos"), auto_start=False)
    values.update(overrides)
    return StandaloneOptions(**values)


def test_install_without_start(package_manager, fake_probe, lifecycle, tmp_path):
    options = standalone_options(tmp_path)
    result = make_runner(package_manager, fake_probe, lifecycle, tmp_path).run(options)

    assert result.exit_code == 0
    assert result.install_dir == tmp_path / "nacos" / "standalone" / "nacos-3.1.1"
    assert result.port_layout[0].main == 8848
    assert result.port_layout[0].console == 8080
    assert lifecycle.started_dirs == []

    config = read_properties(result.install_dir / "conf" / "application.properties")
    assert config["nacos.server.main.port"] == "8848"
    assert config["nacos.console.port"] == "8080"
    assert config["nacos.core.auth.enabled"] == "true"
    assert config["nacos.core.auth.server.identity.key"].startswith("nacos_identity_")
    # standalone keeps the server's default embedded storage settings
    assert "spring.sql.init.platform" not in config


def test_custom_install_dir_and_busy_port(package_manager, lifecycle, tmp_path):
    probe = FakeProbe(busy={8848})
    options = standalone_options(tmp_path, install_dir=str(tmp_path / "custom"))

    result = make_runner(package_manager, probe, lifecycle, tmp_path).run(options)

    assert result.install_dir == tmp_path / "custom"
    assert package_manager.extracted == ["custom"]
    assert result.port_layout[0].main == 18848


def test_advanced_mode_conflict_fails(package_manager, lifecycle, tmp_path):
    probe = FakeProbe(busy={8848})
    options = standalone_options(tmp_path, advanced_mode=True)

    result = make_runner(package_manager, probe, lifecycle, tmp_path).run(options)

    assert result.exit_code == 1
    assert "8848" in result.error
    assert "-p" in result.hint
    assert result.error_category == "port_conflict"


def test_detached_start_sets_password(package_manager, fake_probe, lifecycle, tmp_path):
    options = standalone_options(tmp_path, auto_start=True, detach=True)

    result = make_runner(package_manager, fake_probe, lifecycle, tmp_path).run(options)

    assert result.exit_code == 0
    assert lifecycle.started_dirs == [result.install_dir]
    assert lifecycle.password_calls == [(8848, "3.1.1", result.credentials.admin_password)]
    assert lifecycle.stop_calls == []
    assert len(lifecycle.running) == 1


def test_slow_start_only_warns(package_manager, fake_probe, tmp_path):
    lifecycle = FakeLifecycle(unready_ports={8848})
    options = standalone_options(tmp_path, auto_start=True, detach=True)

    result = make_runner(package_manager, fake_probe, lifecycle, tmp_path).run(options)

    assert result.exit_code == 0
    assert lifecycle.password_calls == []
    assert lifecycle.killed == []


def test_missing_pid_is_not_fatal(package_manager, fake_probe, lifecycle, tmp_path):
    lifecycle.start = Mock(side_effect=NodeStartError("no java process"))
    options = standalone_options(tmp_path, auto_start=True)

    result = make_runner(package_manager, fake_probe, lifecycle, tmp_path).run(options)

    assert result.exit_code == 0
    assert lifecycle.stop_calls == []


def test_monitor_returns_when_process_exits(package_manager, fake_probe, lifecycle, tmp_path):
    sleep = Mock(side_effect=lambda seconds: lifecycle.running.clear())
    options = standalone_options(tmp_path, auto_start=True)

    result = make_runner(package_manager, fake_probe, lifecycle, tmp_path, sleep=sleep).run(options)

    assert result.exit_code == 1
    sleep.assert_called_once()
    # already gone, nothing left to stop
    assert lifecycle.stop_calls == []


def test_interrupt_stops_started_process(package_manager, fake_probe, lifecycle, tmp_path):
    sleep = Mock(side_effect=KeyboardInterrupt())
    options = standalone_options(tmp_path, auto_start=True)
    runner = make_runner(package_manager, fake_probe, lifecycle, tmp_path, sleep=sleep)

    with pytest.raises(KeyboardInterrupt):
        runner.run(options)

    assert lifecycle.stop_calls == [1001]
    assert lifecycle.running == set()
