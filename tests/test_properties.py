"""
Tests for property file helpers
"""
from nacos_setup.utils.properties import (
    backup_config_file,
    read_properties,
    read_property,
    remove_properties,
    set_config_property,
    write_properties,
)


def test_set_replaces_active_line(tmp_path):
    path = tmp_path / "application.properties"
    path.write_text("server.port=8848\nother=1\n")

    set_config_property(path, "server.port", 18848)

    assert path.read_text() == "server.port=18848\nother=1\n"


def test_set_uncomments_commented_line(tmp_path):
    path = tmp_path / "application.properties"
    path.write_text("#nacos.core.auth.enabled=false\n")

    set_config_property(path, "nacos.core.auth.enabled", "true")

    assert path.read_text() == "nacos.core.auth.enabled=true\n"


def test_set_appends_missing_key_and_is_idempotent(tmp_path):
    path = tmp_path / "application.properties"
    path.write_text("a=1")

    set_config_property(path, "b", "2")
    set_config_property(path, "b", "2")

    assert path.read_text() == "a=1\nb=2\n"


def test_set_does_not_match_key_prefix(tmp_path):
    path = tmp_path / "application.properties"
    path.write_text("db.url.0=jdbc:mysql://x\n")

    set_config_property(path, "db.url", "y")

    assert read_properties(path) == {"db.url.0": "jdbc:mysql://x", "db.url": "y"}


def test_read_skips_comments_and_keeps_equals_in_values(tmp_path):
    path = tmp_path / "share.properties"
    path.write_text("# header\n\nkey=YWJj==\n#ignored=1\nbroken line\n")

    assert read_properties(path) == {"key": "YWJj=="}
    assert read_property(path, "key") == "YWJj=="
    assert read_property(tmp_path / "missing", "key") is None


def test_remove_properties_by_prefix(tmp_path):
    path = tmp_path / "application.properties"
    path.write_text("db.num=1\ndb.url.0=x\n#db.user=nacos\nserver.port=8848\n")

    assert remove_properties(path, ["db.num", "db.url"]) == 2
    assert path.read_text() == "#db.user=nacos\nserver.port=8848\n"


def test_write_properties_with_header(tmp_path):
    path = tmp_path / "out.properties"
    write_properties(path, {"a": "1"}, header="generated")
    assert path.read_text() == "# generated\n\na=1\n"


def test_backup_config_file(tmp_path):
    path = tmp_path / "application.properties"
    assert backup_config_file(path) is None

    path.write_text("a=1\n")
    backup = backup_config_file(path)

    assert backup.name.startswith("application.properties.backup.")
    assert backup.read_text() == "a=1\n"
