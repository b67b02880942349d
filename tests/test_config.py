"""Tests for configuration loading and the command-line entry point."""

import argparse
import json

import pytest
import yaml
from pydantic import ValidationError

from gpu_monitor import main
from gpu_monitor.config import AppConfig, load_config


class TestLoadConfig:
    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "nodes:\n"
            "  - {name: gpu1, host: 10.0.0.1, port: 8081, alias: First}\n"
            "aggregator:\n"
            "  port: 9090\n"
            "collector:\n"
            "  enrich_processes: true\n"
        )
        settings = load_config(path)
        assert settings.nodes[0].name == "gpu1"
        assert settings.nodes[0].url == "http://10.0.0.1:8081/gpu-info"
        assert settings.aggregator.port == 9090
        assert settings.aggregator.poll_interval_sec == 5.0
        assert settings.aggregator.fetch_timeout_sec == 5.0
        assert settings.collector.enrich_processes is True
        assert settings.collector.top_processes == 2

    def test_json_is_accepted(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"nodes": [{"name": "gpu1", "host": "h", "port": 8081, "alias": ""}]}))
        settings = load_config(path)
        assert settings.aggregator.port == 8080
        assert settings.nodes[0].alias == ""

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == AppConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("nodes: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_duplicate_node_names(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "nodes:\n  - {name: gpu1, host: a, port: 8081}\n  - {name: gpu1, host: b, port: 8081}\n"
        )
        with pytest.raises(ValidationError, match="Duplicate node name"):
            load_config(path)

    @pytest.mark.parametrize("port", [0, 70000])
    def test_port_out_of_range(self, tmp_path, port):
        path = tmp_path / "config.yaml"
        path.write_text(f"aggregator:\n  port: {port}\n")
        with pytest.raises(ValidationError):
            load_config(path)


class TestCommandLine:
    @pytest.mark.parametrize("value", ["abc", "0", "65536"])
    def test_invalid_port(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            main.parse_port(value)

    def test_valid_port(self):
        assert main.parse_port("8081") == 8081

    def test_defaults(self):
        args = main.build_arg_parser().parse_args([])
        assert args.mode == "aggregator"
        assert args.port is None

    def test_aggregator_requires_config(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main.load_settings(tmp_path / "absent.yaml", required=True)
        assert exc_info.value.code == 1

    def test_server_runs_without_config(self, tmp_path):
        assert main.load_settings(tmp_path / "absent.yaml", required=False) == AppConfig()

    def test_main_starts_collector(self, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setattr(main.uvicorn, "run", lambda app, host, port: calls.append((app, port)))
        main.main(["--mode", "server", "--port", "9999", "--config", str(tmp_path / "absent.yaml")])
        app, port = calls[0]
        assert port == 9999
        assert app.state.collector_settings.port == 8081
