from qrtrace import config


def test_cors_origins_split(monkeypatch):
    monkeypatch.setattr(config, "CORS_ORIGINS", "https://a.example, ,https://b.example")
    assert config.cors_origins() == ["https://a.example", "https://b.example"]


def test_validate_config_flags_missing_secret(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "SECRET_KEY", "")
    monkeypatch.setattr(config, "SECRET_PATH", str(tmp_path / "missing.json"))
    assert config.validate_config()["signing_secret"] is False

    monkeypatch.setattr(config, "SECRET_KEY", "set")
    assert all(config.validate_config().values())


def test_production_switch(monkeypatch):
    monkeypatch.setattr(config, "ENV", "prod")
    assert config.is_production()
    monkeypatch.setattr(config, "ENV", "stage")
    assert not config.is_production()
