import pytest

from telemetry_hub.core.config import Settings


def test_settings_strip_string_values_for_bool_fields() -> None:
    settings = Settings(
        sync_scheduler_enabled=" true ",
        auth_enabled=" false ",
        monthly_report_enabled=" false ",
    )
    assert settings.sync_scheduler_enabled is True
    assert settings.auth_enabled is False
    assert settings.monthly_report_enabled is False


def test_settings_defaults_match_collection_contract() -> None:
    settings = Settings()
    assert settings.dashboard_cache_ttl_seconds == 300
    assert settings.upsert_chunk_size == 100
    assert settings.retention_days == 90


def test_source_definitions_parse_json_list() -> None:
    settings = Settings(sources_json=' [{"name": "edr", "type": "file", "file_path": "exports/edr.json"}] ')
    assert settings.source_definitions == [{"name": "edr", "type": "file", "file_path": "exports/edr.json"}]
    assert Settings(sources_json="").source_definitions == []
    with pytest.raises(ValueError):
        _ = Settings(sources_json='{"name": "edr"}').source_definitions
