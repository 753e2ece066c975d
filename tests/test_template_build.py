"""
Tests for the E2B analysis template build script
"""

from unittest.mock import MagicMock, patch

import pytest

import template_build


@pytest.mark.unit
def test_main_requires_api_key(monkeypatch, capsys):
    monkeypatch.setattr(template_build, "load_dotenv", lambda: False)
    monkeypatch.delenv("E2B_API_KEY", raising=False)

    assert template_build.main([]) == 1
    assert "E2B_API_KEY" in capsys.readouterr().err


@pytest.mark.unit
def test_main_builds_with_alias(monkeypatch):
    monkeypatch.setattr(template_build, "load_dotenv", lambda: False)
    monkeypatch.setenv("E2B_API_KEY", "e2b_test_key")
    fake_template = MagicMock()

    with patch("e2b.Template", fake_template), patch("e2b.default_build_logger", MagicMock()):
        assert template_build.main(["angstrom-test"]) == 0

    kwargs = fake_template.build.call_args.kwargs
    assert kwargs["alias"] == "angstrom-test"
    assert kwargs["memory_mb"] == 2048


@pytest.mark.unit
def test_template_installs_analysis_packages():
    fake_template = MagicMock()
    chain = fake_template.return_value
    for method in ("from_image", "set_user", "set_workdir", "set_envs", "apt_install", "pip_install"):
        getattr(chain, method).return_value = chain

    with patch("e2b.Template", fake_template):
        template_build.build_analysis_template()

    packages = chain.pip_install.call_args.args[0]
    assert {p.split("==")[0] for p in packages} == {"pandas", "numpy", "matplotlib", "seaborn"}
