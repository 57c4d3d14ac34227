"""
Tests for Java runtime discovery
"""
import pytest
from unittest.mock import patch

from nacos_setup.errors import JavaRuntimeError
from nacos_setup.utils.java import (
    JavaRuntime,
    find_java_runtime,
    parse_java_version,
    required_java_version,
    runtime_options,
    search_java_installation,
)


@pytest.mark.parametrize("output,expected", [
    ('openjdk version "17.0.9" 2023-10-17', 17),
    ('java version "1.8.0_392"', 8),
    ('openjdk version "21" 2023-09-19', 21),
    ('command not found', 0),
])
def test_parse_java_version(output, expected):
    assert parse_java_version(output) == expected


def test_required_java_version():
    assert required_java_version("3.1.1") == 17
    assert required_java_version("2.5.1") == 8


def test_runtime_options_only_for_modular_jdks():
    assert runtime_options(None) == ""
    assert runtime_options(JavaRuntime("/usr/bin/java", 8)) == ""
    assert "--add-opens" in runtime_options(JavaRuntime("/usr/bin/java", 17))


def test_java_home_preferred(tmp_path):
    java = tmp_path / "jdk" / "bin" / "java"
    java.parent.mkdir(parents=True)
    java.write_text("#!/bin/sh\n")
    java.chmod(0o755)

    with patch.dict('os.environ', {'JAVA_HOME': str(tmp_path / "jdk")}), \
         patch('nacos_setup.utils.java.shutil.which', return_value=None), \
         patch('nacos_setup.utils.java.get_java_version', return_value=17):
        runtime = find_java_runtime(17)

    assert runtime.path == str(java)
    assert runtime.version == 17
    assert runtime.home == str((tmp_path / "jdk").resolve())


def test_old_runtime_accepted_with_warning():
    old = JavaRuntime("/usr/lib/jvm/java-8/bin/java", 8)
    with patch.dict('os.environ', {}, clear=True), \
         patch('nacos_setup.utils.java.shutil.which', return_value=None), \
         patch('nacos_setup.utils.java.search_java_installation', side_effect=[None, old]) as search:
        assert find_java_runtime(17) is old

    assert [call.args[0] for call in search.call_args_list] == [17, 8]


def test_no_java_raises():
    with patch.dict('os.environ', {}, clear=True), \
         patch('nacos_setup.utils.java.shutil.which', return_value=None), \
         patch('nacos_setup.utils.java.search_java_installation', return_value=None):
        with pytest.raises(JavaRuntimeError) as exc_info:
            find_java_runtime(17)
    assert "openjdk-17" in exc_info.value.hint


def test_search_picks_highest_version():
    with patch('nacos_setup.utils.java._find_java_executables', return_value=['/a/bin/java', '/b/bin/java']), \
         patch('nacos_setup.utils.java.get_java_version', side_effect=[17, 21]):
        runtime = search_java_installation(17)
    assert runtime == JavaRuntime('/b/bin/java', 21)
