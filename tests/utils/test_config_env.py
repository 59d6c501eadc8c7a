import importlib
import sys
import types

import pytest

from doccrawl import config


def test_get_int_env_parses_and_falls_back(monkeypatch):
    monkeypatch.setenv("DOCCRAWL_TEST_INT", "7")
    assert config.get_int_env("DOCCRAWL_TEST_INT", 1) == 7
    monkeypatch.setenv("DOCCRAWL_TEST_INT", "seven")
    assert config.get_int_env("DOCCRAWL_TEST_INT", 1) == 1
    monkeypatch.delenv("DOCCRAWL_TEST_INT")
    assert config.get_int_env("DOCCRAWL_TEST_INT", 1) == 1


def test_optional_helpers_return_none_when_unset(monkeypatch):
    monkeypatch.delenv("DOCCRAWL_TEST_OPT", raising=False)
    assert config.get_optional_int_env("DOCCRAWL_TEST_OPT") is None
    assert config.get_optional_str_env("DOCCRAWL_TEST_OPT") is None
    monkeypatch.setenv("DOCCRAWL_TEST_OPT", "")
    assert config.get_optional_str_env("DOCCRAWL_TEST_OPT") is None


def test_float_env_and_runtime_settings(monkeypatch):
    monkeypatch.setenv("DOCCRAWL_CANCEL_TIMEOUT", "2.5")
    monkeypatch.setenv("DOCCRAWL_MAX_PARALLEL", "5")
    assert config.cancel_timeout_seconds() == 2.5
    assert config.max_parallel() == 5


def test_dotenv_present_but_fails_to_load(monkeypatch, tmp_path):
    tmp_path.joinpath(".env").write_text("USER_AGENT=FromFile")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setitem(sys.modules, "dotenv", types.SimpleNamespace(load_dotenv=lambda: False))
    monkeypatch.delitem(sys.modules, "doccrawl.config")
    with pytest.raises(RuntimeError):
        importlib.import_module("doccrawl.config")
