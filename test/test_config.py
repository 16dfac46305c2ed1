"""Tests for config loading."""

import pytest
from scorefeed.config import load_config
from scorefeed.freshness import DataCategory


@pytest.fixture()
def valid_config_yaml(tmp_path):
    """Write a minimal valid config.yaml and return its path."""
    content = """\
upstream_base_url: "http://scraper:3001"
fetch_timeout: 10
max_retries: 1
retry_delay: 2
max_keys: 5
refresh_interval: 600
fallback_path: "fallback.yaml"

datasets:
  - name: "schedule"
    path: "/api/schedule"
    ttl_seconds: 5400
    view: "schedule"
    hot: true
  - name: "points-table"
    path: "/api/points-table"
    category: "standings"
    view: "points"
  - name: "matches"
    source: "schedule"
    view: "matches"
    category: "live"
"""
    p = tmp_path / "config.yaml"
    p.write_text(content)
    return str(p)


class TestLoadConfig:
    def test_loads_valid_config(self, valid_config_yaml):
        config = load_config(valid_config_yaml)
        assert config.upstream_base_url == "http://scraper:3001"
        assert config.fetch_timeout == 10
        assert config.max_retries == 1
        assert config.retry_delay == 2
        assert config.max_keys == 5
        assert config.refresh_interval == 600
        assert config.fallback_path == "fallback.yaml"
        assert [d.name for d in config.datasets] == ["schedule", "points-table", "matches"]
        assert config.datasets[0].hot is True
        assert config.datasets[1].category == DataCategory.standings
        assert config.datasets[2].source == "schedule"
        assert config.datasets[2].view == "matches"
        assert config.datasets[1].view == "points"

    def test_defaults_applied(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text('datasets:\n  - name: "schedule"\n')
        config = load_config(str(p))
        assert config.upstream_base_url == "http://localhost:3001"
        assert config.fetch_timeout == 30
        assert config.max_retries == 2
        assert config.retry_delay == 5
        assert config.max_keys == 10
        assert config.refresh_interval == 7200
        assert config.fallback_path is None
        dataset = config.datasets[0]
        assert dataset.ttl_seconds == 5400
        assert dataset.category == DataCategory.schedule
        assert dataset.hot is False
        assert dataset.view is None

    def test_env_supplies_api_key(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("UPSTREAM_API_KEY", "scraper-key")
        config = load_config(valid_config_yaml)
        assert config.upstream_api_key == "scraper-key"

    def test_api_key_never_read_from_yaml(self, tmp_path, monkeypatch):
        monkeypatch.delenv("UPSTREAM_API_KEY", raising=False)
        p = tmp_path / "config.yaml"
        p.write_text('upstream_api_key: "leaked"\ndatasets:\n  - name: "schedule"\n')
        config = load_config(str(p))
        assert config.upstream_api_key is None

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_config_path_from_env(self, valid_config_yaml, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", valid_config_yaml)
        config = load_config()
        assert len(config.datasets) == 3

    def test_get_dataset(self, valid_config_yaml):
        config = load_config(valid_config_yaml)
        assert config.get_dataset("points-table").path == "/api/points-table"
        assert config.get_dataset("nonexistent") is None


class TestValidation:
    def _load(self, tmp_path, content):
        p = tmp_path / "config.yaml"
        p.write_text(content)
        return load_config(str(p))

    def test_missing_datasets_raises(self, tmp_path):
        with pytest.raises(Exception):  # ValidationError
            self._load(tmp_path, "max_keys: 10\n")

    def test_empty_datasets_raises(self, tmp_path):
        with pytest.raises(Exception):  # ValidationError
            self._load(tmp_path, "datasets: []\n")

    def test_duplicate_names_raises(self, tmp_path):
        content = 'datasets:\n  - name: "schedule"\n  - name: "schedule"\n'
        with pytest.raises(Exception, match="Duplicate"):
            self._load(tmp_path, content)

    def test_name_with_separator_raises(self, tmp_path):
        with pytest.raises(Exception):
            self._load(tmp_path, 'datasets:\n  - name: "matches:live"\n')

    def test_unknown_source_raises(self, tmp_path):
        content = 'datasets:\n  - name: "matches"\n    source: "fixtures"\n'
        with pytest.raises(Exception, match="unknown source"):
            self._load(tmp_path, content)

    def test_derived_of_derived_raises(self, tmp_path):
        content = """\
datasets:
  - name: "schedule"
  - name: "matches"
    source: "schedule"
    view: "matches"
  - name: "live"
    source: "matches"
    view: "matches"
"""
        with pytest.raises(Exception, match="derived source"):
            self._load(tmp_path, content)

    @pytest.mark.parametrize("field,value", [
        ("fetch_timeout", 0),
        ("max_retries", -1),
        ("max_keys", 0),
        ("refresh_interval", -5),
    ])
    def test_out_of_range_settings_raise(self, tmp_path, field, value):
        content = f'{field}: {value}\ndatasets:\n  - name: "schedule"\n'
        with pytest.raises(Exception):
            self._load(tmp_path, content)

    def test_unknown_category_raises(self, tmp_path):
        content = 'datasets:\n  - name: "schedule"\n    category: "weather"\n'
        with pytest.raises(Exception):
            self._load(tmp_path, content)

    def test_derived_without_view_raises(self, tmp_path):
        content = """\
datasets:
  - name: "schedule"
  - name: "matches"
    source: "schedule"
"""
        with pytest.raises(Exception, match="needs a view"):
            self._load(tmp_path, content)

    def test_unknown_view_raises(self, tmp_path):
        content = 'datasets:\n  - name: "schedule"\n    view: "calendar"\n'
        with pytest.raises(Exception):
            self._load(tmp_path, content)
