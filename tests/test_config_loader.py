"""Config loader tests: defaults, overrides, mtime cache"""
import sys
import os
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from lib.config_loader import load_server_config


def test_bundled_config_has_all_sections():
    config = load_server_config()
    for key in ["http", "serial", "storage", "playback"]:
        assert key in config
    assert config["serial"]["baudrate"] == 9600
    assert config["playback"]["delay_per_speed_unit_ms"] == 50


def test_partial_file_is_merged_over_defaults():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'cfg.yaml')
        with open(path, 'w', encoding='utf-8') as f:
            f.write("http:\n  port: 9000\nplayback:\n  import_line_delay_ms: 250\n")
        config = load_server_config(path)

    assert config["http"]["port"] == 9000
    assert config["http"]["cors_origin"] == "http://localhost:3000"
    assert config["playback"]["import_line_delay_ms"] == 250
    assert config["playback"]["home_settle_ms"] == 2000


def test_missing_file_falls_back_to_defaults():
    config = load_server_config("/nonexistent/server_config.yaml")
    assert config["http"]["port"] == 3001
    assert config["storage"]["sequences_file"] == "sequences.json"


def test_reload_after_file_change():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, 'cfg.yaml')
        with open(path, 'w', encoding='utf-8') as f:
            f.write("http:\n  port: 4000\n")
        assert load_server_config(path)["http"]["port"] == 4000

        with open(path, 'w', encoding='utf-8') as f:
            f.write("http:\n  port: 4001\n")
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 5))
        assert load_server_config(path)["http"]["port"] == 4001
