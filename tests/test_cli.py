"""
Tests for the angstrom-demo command line
"""

import json
import logging

import pytest

from src import cli
from src.core.config import Settings


@pytest.fixture(autouse=True)
def restore_root_logger(monkeypatch):
    """main() reconfigures the root logger; put it back afterwards"""
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("JSON_LOGS", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def printed_result(out):
    """Result JSON printed after any log lines"""
    return json.loads(out[out.index("{"):])


@pytest.fixture
def demo_settings(monkeypatch):
    """Run the CLI with an E2B credential and the mock backend"""
    settings = Settings(e2b_api_key="e2b_test_key")
    monkeypatch.setattr(cli.Settings, "from_env", classmethod(lambda cls: settings))
    return settings


@pytest.mark.unit
def test_parser_defaults():
    args = cli.build_parser().parse_args([])

    assert args.tool == "voe-risk"
    assert args.data is None
    assert args.data_file is None


@pytest.mark.unit
def test_parser_rejects_unknown_tool():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["genome"])


@pytest.mark.unit
def test_parser_data_sources_are_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--data", "{}", "--data-file", "x.json"])


@pytest.mark.unit
def test_load_data_sources(tmp_path):
    data_file = tmp_path / "labs.json"
    data_file.write_text(json.dumps([{"hemoglobin": 7.1}]))
    parser = cli.build_parser()

    assert cli.load_data(parser.parse_args(["--data", '{"age": 30}'])) == {"age": 30}
    assert cli.load_data(parser.parse_args(["lab-trends", "--data-file", str(data_file)])) == [{"hemoglobin": 7.1}]
    assert cli.load_data(parser.parse_args(["lab-trends"])) == cli.SAMPLE_DATA["lab-trends"]


@pytest.mark.unit
def test_main_prints_completed_result(demo_settings, capsys):
    exit_code = cli.main(["voe-risk"])

    assert exit_code == 0
    result = printed_result(capsys.readouterr().out)
    assert result["status"] == "completed"
    assert result["return_value"] == {"message": "Mock result"}


@pytest.mark.unit
def test_main_without_key_reports_failure(monkeypatch, capsys):
    monkeypatch.setattr(cli.Settings, "from_env", classmethod(lambda cls: Settings()))

    exit_code = cli.main(["lab-trends"])

    assert exit_code == 1
    result = printed_result(capsys.readouterr().out)
    assert result["status"] == "failed"


@pytest.mark.unit
def test_main_bad_json(demo_settings, capsys):
    exit_code = cli.main(["--data", "{not json"])

    assert exit_code == 2
    assert "Could not load input data" in capsys.readouterr().err


@pytest.mark.unit
def test_main_missing_data_file(demo_settings, tmp_path):
    assert cli.main(["--data-file", str(tmp_path / "missing.json")]) == 2
