import json
import logging

from socks5d.cli import main


def test_missing_config_file(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    path = tmp_path / "absent.json"
    assert main(["-c", str(path)]) == 1
    assert str(path) in caplog.text


def test_default_config_path(tmp_path, monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    monkeypatch.chdir(tmp_path)
    assert main([]) == 1
    assert "config.json" in caplog.text


def test_invalid_json(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert main(["-c", str(path)]) == 1
    assert "failed to load configuration" in caplog.text


def test_wrong_field_type(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"address": 1080}))
    assert main(["-c", str(path)]) == 1


def test_server_start_failure(tmp_path, caplog):
    caplog.set_level(logging.INFO)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"address": "127.0.0.1:notaport"}))
    assert main(["-c", str(path)]) == 1
    assert "notaport" in caplog.text