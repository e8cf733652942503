import pytest

from cexfeed.config import Settings
from cexfeed.db.config.loader import AppConfig, StaticRecord
from cexfeed.core.models.announcement import Category, Importance
from conftest import CONFIG_DIR


@pytest.fixture(scope="module")
def app_config():
    return AppConfig.load(str(CONFIG_DIR))


class TestAppConfig:
    def test_tiers(self, app_config):
        assert [e.name for e in app_config.primary_exchanges] == ["binance", "okx"]
        assert [e.name for e in app_config.other_exchanges] == ["bybit", "htx"]

    def test_sources_sorted_by_priority(self, app_config):
        sources = app_config.exchanges["binance"].sorted_sources()

        assert [s.parser for s in sources] == ["binance_cms", "binance_support", "binance_news", "binance_rss"]
        assert sources[0].params["pageSize"] == 15

    def test_legacy_endpoints_keep_declaration_order(self, app_config):
        legacy = app_config.exchanges["binance"].legacy

        assert [name for name, _ in legacy.endpoints] == ["primary", "fallback"]
        assert legacy.catalog_categories["49"] == "new-listings"
        assert legacy.valid_keys == ("data", "articles", "list")

    def test_fallback_records(self, app_config):
        okx = app_config.exchanges["okx"]

        assert [r.id for r in okx.fallback] == ["okx_fallback_1", "okx_fallback_2"]
        assert okx.web.examples[0].tags == ("VIRTUAL", "AI", "现货")

    def test_other_exchange_defaults(self, app_config):
        bybit = app_config.exchanges["bybit"]

        assert bybit.enabled
        assert bybit.legacy is None
        assert bybit.fallback == ()
        assert not bybit.has_proxy

    def test_general_settings(self, app_config):
        assert app_config.request.challenge_delay == (5.0, 10.0)
        assert app_config.aggregation.legacy_delay == (2.0, 4.0)
        assert app_config.aggregation.high_priority_limit == 50
        assert app_config.storage.use_fakeredis

    def test_missing_directory_yields_defaults(self, tmp_path):
        config = AppConfig.load(str(tmp_path))

        assert dict(config.exchanges) == {}
        assert config.web.retry_delay == (2, 4)


class TestStaticRecord:
    def test_to_announcement_is_synthetic(self):
        record = StaticRecord("r1", "Binance Will List ABC", age_hours=2)

        ann = record.to_announcement("binance", 10_000_000)

        assert ann.synthetic
        assert ann.publish_time == 10_000_000 - 7_200_000
        assert ann.category == Category.NEW_LISTINGS
        assert ann.importance == Importance.HIGH

    def test_explicit_fields_win(self):
        record = StaticRecord("r2", "Binance Will List ABC", category="earn", importance="low", tags=("X",))

        ann = record.to_announcement("binance", 0)

        assert (ann.category, ann.importance, ann.tags) == (Category.EARN, Importance.LOW, ["X"])


class TestSettings:
    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CONFIG_DIR", str(CONFIG_DIR))
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("USE_FAKEREDIS", "false")
        monkeypatch.delenv("REDIS_URL", raising=False)

        settings = Settings.from_env()
        config = settings.load_app_config()

        assert settings.log_level == "DEBUG"
        assert config.storage.db_path == str(tmp_path / "x.db")
        assert config.storage.use_fakeredis is False
        assert config.storage.redis_url == "redis://localhost:6379"

    def test_yaml_values_kept_without_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ("DB_PATH", "REDIS_URL", "USE_FAKEREDIS"):
            monkeypatch.delenv(name, raising=False)

        config = Settings(config_dir=str(CONFIG_DIR)).load_app_config()

        assert config.storage.db_path == "announcements.db"
        assert config.storage.use_fakeredis
