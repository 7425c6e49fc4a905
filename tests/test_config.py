import pytest

from planner_sync import config
from planner_sync.config import DEFAULT_API_URL, ConfigurationError, PlannerCredentials


def test_from_env_reads_credentials() -> None:
    env = {
        "INVENTORY_PLANNER_KEY": "abcdefghijklmnop",
        "INVENTORY_PLANNER_ACCOUNT": "a1234",
        "INVENTORY_PLANNER_API": "https://example.test/api/v1/",
    }
    creds = PlannerCredentials.from_env(env)
    assert creds.api_key == "abcdefghijklmnop"
    assert creds.account_id == "a1234"
    assert creds.api_url == "https://example.test/api/v1"


def test_from_env_defaults_api_url() -> None:
    creds = PlannerCredentials.from_env({"INVENTORY_PLANNER_KEY": "k", "INVENTORY_PLANNER_ACCOUNT": "a"})
    assert creds.api_url == DEFAULT_API_URL


def test_from_env_reports_every_missing_variable() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        PlannerCredentials.from_env({"INVENTORY_PLANNER_KEY": "  "})
    assert excinfo.value.missing == ["INVENTORY_PLANNER_KEY", "INVENTORY_PLANNER_ACCOUNT"]


def test_from_env_uses_process_environment(monkeypatch) -> None:
    monkeypatch.setenv("INVENTORY_PLANNER_KEY", "from-env")
    monkeypatch.setenv("INVENTORY_PLANNER_ACCOUNT", "acct")
    monkeypatch.delenv("INVENTORY_PLANNER_API", raising=False)
    assert PlannerCredentials.from_env().api_key == "from-env"


def test_headers_send_raw_token() -> None:
    headers = PlannerCredentials(api_key="tok", account_id="acct").headers()
    assert headers == {
        "Authorization": "tok",
        "Account": "acct",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def test_redacted_hides_key() -> None:
    view = PlannerCredentials(api_key="0123456789SECRET", account_id="acct").redacted()
    assert view["api_key_preview"] == "0123456789..."
    assert view["api_key_length"] == 16
    assert "SECRET" not in str(view)


def test_data_dir_follows_working_directory(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv(config.DATA_DIR_ENV, raising=False)
    monkeypatch.chdir(tmp_path)

    assert config.data_dir() == tmp_path / "data"
    assert config.cache_dir() == tmp_path / "data" / "cache"


def test_data_dir_env_override(tmp_path) -> None:
    env = {config.DATA_DIR_ENV: str(tmp_path / "planner")}

    cache = config.ensure_data_dirs(env)

    assert config.data_dir(env) == tmp_path / "planner"
    assert cache == tmp_path / "planner" / "cache"
    assert cache.is_dir()
