"""
Tests for per-node application.properties edits
"""
import pytest

from nacos_setup.cluster_orchestrator.node_config import (
    apply_security_config,
    configure_embedded_storage,
    datasource_url,
    has_datasource_config,
    load_datasource_config,
    read_main_port,
    read_port_set,
    update_port_config,
    write_datasource_config,
)
from nacos_setup.errors import ProvisioningError
from nacos_setup.models import PortSet, SharedSecrets
from nacos_setup.utils.properties import read_properties


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "conf" / "application.properties"
    path.parent.mkdir()
    path.write_text("server.servlet.contextPath=/nacos\n#nacos.core.auth.enabled=false\n")
    return path


def test_nacos3_port_keys(config_file):
    update_port_config(config_file, PortSet(8858, 8090), "3.1.1")

    config = read_properties(config_file)
    assert config["nacos.server.main.port"] == "8858"
    assert config["nacos.console.port"] == "8090"
    assert "server.port" not in config
    assert read_port_set(config_file, "3.1.1") == PortSet(8858, 8090)


def test_nacos2_port_key(config_file):
    update_port_config(config_file, PortSet(8858), "2.5.1")

    assert read_properties(config_file)["server.port"] == "8858"
    assert read_port_set(config_file, "2.5.1") == PortSet(8858)


def test_read_main_port_falls_back_to_server_port(config_file):
    config_file.write_text("server.port=8848\n")
    assert read_main_port(config_file, "3.1.1") == 8848


def test_read_main_port_missing(config_file):
    assert read_main_port(config_file, "3.1.1") is None
    assert read_port_set(config_file, "3.1.1") is None


def test_security_config(config_file):
    apply_security_config(config_file, SharedSecrets("dG9rZW4=", "nacos_cluster_1", "abcd1234abcd1234", "pw"))

    config = read_properties(config_file)
    assert config["nacos.core.auth.enabled"] == "true"
    assert config["nacos.core.auth.plugin.nacos.token.secret.key"] == "dG9rZW4="
    assert config["nacos.core.auth.server.identity.key"] == "nacos_cluster_1"
    assert config["nacos.core.auth.server.identity.value"] == "abcd1234abcd1234"


def test_embedded_storage_drops_external_db_keys(config_file):
    config_file.write_text("spring.datasource.platform=mysql\ndb.num=1\ndb.url.0=jdbc:x\ndb.user.0=nacos\n")

    configure_embedded_storage(config_file)

    assert read_properties(config_file) == {"spring.sql.init.platform": "derby"}


def test_missing_config_file(tmp_path):
    with pytest.raises(ProvisioningError):
        update_port_config(tmp_path / "absent.properties", PortSet(8848, 8080), "3.1.1")


def test_datasource_detection(tmp_path):
    external = tmp_path / "mysql.properties"
    external.write_text("spring.sql.init.platform=mysql\ndb.url.0=jdbc:x\n")
    empty = tmp_path / "empty.properties"
    empty.write_text("")
    unrelated = tmp_path / "other.properties"
    unrelated.write_text("a=1\n")

    assert has_datasource_config(external) is True
    assert has_datasource_config(empty) is False
    assert has_datasource_config(unrelated) is False
    assert has_datasource_config(tmp_path / "missing.properties") is False


def test_load_datasource_prefers_explicit_file(tmp_path):
    explicit = tmp_path / "explicit.properties"
    explicit.write_text("db.num=1\n")
    global_file = tmp_path / "default.properties"
    global_file.write_text("spring.datasource.platform=mysql\n")

    assert load_datasource_config(explicit, global_file) == explicit
    assert load_datasource_config(None, global_file) == global_file
    assert load_datasource_config(None, tmp_path / "missing") is None


class TestDatasourceConfig:

    def test_mysql_defaults(self, tmp_path):
        path = write_datasource_config('mysql', 'nacos', 'secret', path=tmp_path / "ds" / "default.properties")

        assert path == tmp_path / "ds" / "default.properties"
        config = read_properties(path)
        assert config["spring.sql.init.platform"] == "mysql"
        assert config["db.num"] == "1"
        assert config["db.url.0"].startswith("jdbc:mysql://localhost:3306/nacos?characterEncoding=utf8")
        assert config["db.user.0"] == "nacos"
        assert config["db.password.0"] == "secret"
        assert config["db.pool.config.maximumPoolSize"] == "20"
        assert path.read_text().startswith("# Nacos External Datasource Configuration\n")
        assert has_datasource_config(path) is True
        assert load_datasource_config(None, path) == path

    def test_postgresql_url(self):
        assert datasource_url('postgresql', 'db.local', 5432, 'reg') == \
            "jdbc:postgresql://db.local:5432/reg?currentSchema=public"

    def test_postgresql_default_port(self, tmp_path):
        path = write_datasource_config('postgresql', 'pg', 'pw', host='db.local',
                                       path=tmp_path / "default.properties")
        assert read_properties(path)["db.url.0"] == "jdbc:postgresql://db.local:5432/nacos?currentSchema=public"

    def test_existing_file_needs_overwrite(self, tmp_path):
        path = tmp_path / "default.properties"
        path.write_text("db.num=1\n")

        with pytest.raises(ProvisioningError) as exc_info:
            write_datasource_config('mysql', 'nacos', 'secret', path=path)
        assert "--force" in exc_info.value.hint
        assert path.read_text() == "db.num=1\n"

        write_datasource_config('mysql', 'nacos', 'secret', port=3307, path=path, overwrite=True)
        assert ":3307/" in read_properties(path)["db.url.0"]

    def test_empty_file_is_replaced(self, tmp_path):
        path = tmp_path / "default.properties"
        path.write_text("")
        write_datasource_config('mysql', 'nacos', 'secret', path=path)
        assert has_datasource_config(path) is True

    @pytest.mark.parametrize("platform,user,password", [
        ("oracle", "nacos", "secret"),
        ("mysql", "", "secret"),
        ("mysql", "nacos", ""),
    ])
    def test_invalid_settings_rejected(self, tmp_path, platform, user, password):
        path = tmp_path / "default.properties"
        with pytest.raises(ProvisioningError):
            write_datasource_config(platform, user, password, path=path)
        assert not path.exists()
