import os
import pytest
import yaml

from streampool.config import Config, ConfigurationError, DEFAULT_CONFIG


def write_yaml(path, data):
    with open(path, "w") as f:
        yaml.dump(data, f)
    return str(path)


def test_defaults():
    config = Config().load()
    assert config.get("pool_name") == "streampool"
    assert config.get("await_timeout") == DEFAULT_CONFIG["await_timeout"]
    assert config.get("concurrency") == (os.cpu_count() or 1)
    assert config.get("worker_type") == "process"


def test_load_file(tmp_path):
    path = write_yaml(tmp_path / "pool.yaml", {
        "concurrency": 3,
        "pool_name": "vcf",
        "await_timeout": 30,
        "worker_type": "Thread",
        "log_level": "debug",
    })
    config = Config().load(path)
    assert config.get("concurrency") == 3
    assert config.get("pool_name") == "vcf"
    assert config.get("worker_type") == "thread"
    assert config.get("log_level") == "DEBUG"


def test_overrides_take_precedence(tmp_path):
    path = write_yaml(tmp_path / "pool.yaml", {"concurrency": 3, "batch_size": 50})
    config = Config().load(path, overrides={"concurrency": 8, "batch_size": None})
    assert config.get("concurrency") == 8
    # None overrides do not mask file values
    assert config.get("batch_size") == 50


def test_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    config = Config().load(str(path))
    assert config.get("pool_name") == "streampool"


def test_pool_options():
    options = Config().load(overrides={"concurrency": 2}).pool_options()
    assert options["concurrency"] == 2
    assert "batch_size" not in options
    assert "log_level" not in options


def test_get_all_is_a_copy():
    config = Config().load()
    settings = config.get_all()
    settings["pool_name"] = "changed"
    assert config.get("pool_name") == "streampool"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        Config().load(str(tmp_path / "missing.yaml"))


def test_malformed_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("concurrency: [1, 2\n")
    with pytest.raises(ConfigurationError, match="Error parsing"):
        Config().load(str(path))


def test_non_mapping_file(tmp_path):
    path = write_yaml(tmp_path / "list.yaml", [1, 2, 3])
    with pytest.raises(ConfigurationError, match="mapping"):
        Config().load(path)


@pytest.mark.parametrize("overrides", [
    {"concurrency": 0},
    {"concurrency": "four"},
    {"batch_size": 0},
    {"await_timeout": -1},
    {"admission_poll_interval": 0},
    {"worker_type": "fiber"},
    {"log_level": "LOUD"},
    {"pool_name": ""},
    {"pool_name": "a/b"},
    {"unknown_key": 1},
])
def test_invalid_values(overrides):
    with pytest.raises(ConfigurationError):
        Config().load(overrides=overrides)
