from ledger_resolver.core.config import Settings
from ledger_resolver.services.records import ResolverConfig


def test_resolver_config_qualifies_types_with_package() -> None:
    config = ResolverConfig.from_settings(Settings(package_id="0xabc", table_page_size=50, fetch_concurrency=12))
    assert config.record_type == "0xabc::devhub::Project"
    assert config.creation_event_type == "0xabc::devhub::ProjectCreated"
    assert config.table_page_size == 50
    assert config.fetch_concurrency == 12


def test_resolver_config_without_package_skips_events() -> None:
    config = ResolverConfig.from_settings(Settings(package_id=None))
    assert config.record_type == "devhub::Project"
    assert config.creation_event_type is None


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("LEDGER_RESOLVER_REGISTRY_ID", "0x0a")
    monkeypatch.setenv("LEDGER_RESOLVER_EVENT_WINDOW", "25")
    settings = Settings()
    assert settings.registry_id == "0x0a"
    assert settings.event_window == 25

