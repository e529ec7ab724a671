import pytest


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """A temporary working directory the tools resolve paths against."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def arcane_home(tmp_path, monkeypatch):
    """Point the config directory at a throwaway location with no API key in the env."""
    home = tmp_path / "home"
    monkeypatch.setenv("ARCANE_HOME", str(home))
    monkeypatch.delenv("ARCANE_API_KEY", raising=False)
    monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
    return home
