"""
Tests for polling, credential, version and network helpers
"""
import base64
import socket

import pytest
from unittest.mock import Mock, patch

from nacos_setup.models import PortSet, major_version
from nacos_setup.utils.credentials import generate_password, generate_secret_key, generate_shared_secrets
from nacos_setup.utils.network import get_local_ip
from nacos_setup.utils.polling import poll_until
from nacos_setup.utils.versioning import is_supported_version, version_ge


class TestPollUntil:

    def test_returns_first_truthy_value(self):
        sleep = Mock()
        values = iter([None, 0, 42])
        assert poll_until(lambda: next(values), attempts=5, sleep=sleep) == 42
        assert sleep.call_count == 2

    def test_gives_up_after_attempts(self):
        sleep = Mock()
        predicate = Mock(return_value=False)
        assert poll_until(predicate, attempts=4, interval=0.5, sleep=sleep) is None
        assert predicate.call_count == 4
        # no sleep after the final attempt
        assert sleep.call_count == 3
        sleep.assert_called_with(0.5)

    def test_sleep_first(self):
        sleep = Mock()
        assert poll_until(lambda: True, attempts=3, sleep=sleep, sleep_first=True) is True
        sleep.assert_called_once_with(1.0)

    def test_on_wait_reports_elapsed_attempts(self):
        waited = []
        poll_until(lambda: False, attempts=3, sleep=Mock(), on_wait=waited.append)
        assert waited == [1, 2, 3]


class TestCredentials:

    def test_secret_key_is_32_bytes(self):
        assert len(base64.b64decode(generate_secret_key())) == 32

    def test_password_alphanumeric(self):
        password = generate_password()
        assert len(password) == 12
        assert password.isalnum()

    def test_shared_secrets(self):
        secrets = generate_shared_secrets("nacos_cluster")
        assert secrets.identity_key.startswith("nacos_cluster_")
        assert len(secrets.identity_value) == 16
        assert secrets.admin_password != generate_shared_secrets("nacos_cluster").admin_password


class TestVersions:

    @pytest.mark.parametrize("version,supported", [
        ("2.4.0", True),
        ("2.5.1", True),
        ("3.1.1", True),
        ("2.3.2", False),
        ("1.4.1", False),
    ])
    def test_minimum_version(self, version, supported):
        assert is_supported_version(version) is supported

    def test_numeric_comparison(self):
        assert version_ge("2.10.0", "2.9.9")
        assert version_ge("3.0", "3.0.0")
        assert not version_ge("3.0.0-BETA", "3.0.1")

    def test_major_version(self):
        assert major_version("3.1.1") == 3
        with pytest.raises(ValueError):
            major_version("latest")


class TestPortSet:

    def test_derived_ports(self):
        ports = PortSet(8848, 8080)
        assert ports.derived_ports() == [8848, 9848, 9849, 7848]
        assert ports.all_ports() == [8848, 9848, 9849, 7848, 8080]
        assert ports.to_dict()['console'] == 8080


class TestLocalIp:

    def test_route_address(self):
        with patch('nacos_setup.utils.network._ip_from_route', return_value="192.168.1.20"):
            assert get_local_ip() == "192.168.1.20"

    def test_falls_back_to_interfaces(self):
        address = Mock(family=socket.AF_INET, address="10.1.2.3")
        loopback = Mock(family=socket.AF_INET, address="127.0.0.1")
        with patch('nacos_setup.utils.network._ip_from_route', side_effect=OSError("unreachable")), \
             patch('nacos_setup.utils.network.psutil.net_if_addrs', return_value={'lo': [loopback], 'eth0': [address]}):
            assert get_local_ip() == "10.1.2.3"

    def test_loopback_when_nothing_found(self):
        with patch('nacos_setup.utils.network._ip_from_route', return_value="127.0.1.1"), \
             patch('nacos_setup.utils.network.psutil.net_if_addrs', return_value={}):
            assert get_local_ip() == "127.0.0.1"
