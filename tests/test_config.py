from vaultgate.config import ConfigManager, Settings, load_settings
from vaultgate.config.sources import load_from_toml


def test_defaults_without_file(tmp_path):
    settings = load_settings(environ={"CONFIG_FILE": str(tmp_path / "missing.toml")})
    assert settings == Settings()
    assert settings.jwt_access_expiry == "15m"
    assert settings.jwt_refresh_expiry == "7d"
    assert settings.is_production is False


def test_toml_sections_are_flattened(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        'environment = "production"\n'
        "[jwt]\n"
        'secret = "from-file"\n'
        'access_expiry = "5m"\n'
        "[argon2]\n"
        "time_cost = 4\n"
    )
    assert load_from_toml(path) == {
        "environment": "production",
        "jwt_secret": "from-file",
        "jwt_access_expiry": "5m",
        "argon2_time_cost": 4,
    }
    settings = ConfigManager(environ={"CONFIG_FILE": str(path)}).load()
    assert settings.jwt_secret == "from-file"
    assert settings.argon2_time_cost == 4
    assert settings.is_production is True


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[jwt]\nsecret = "from-file"\n')
    environ = {
        "CONFIG_FILE": str(path),
        "JWT_SECRET": "from-env",
        "S3_USE_PATH_STYLE": "false",
        "SHARE_DOWNLOAD_URL_TTL": "60",
    }
    settings = load_settings(environ=environ)
    assert settings.jwt_secret == "from-env"
    assert settings.s3_use_path_style is False
    assert settings.share_download_url_ttl == 60


def test_explicit_overrides_win(tmp_path):
    environ = {"CONFIG_FILE": str(tmp_path / "none.toml"), "DATABASE_URL": "sqlite:///env.db"}
    settings = load_settings(environ=environ, overrides={"database_url": "sqlite:///override.db"})
    assert settings.database_url == "sqlite:///override.db"


def test_config_path_default():
    assert str(ConfigManager(environ={}).config_path) == "config.toml"


def test_prefixed_environment_variable_wins(tmp_path):
    environ = {
        "CONFIG_FILE": str(tmp_path / "none.toml"),
        "JWT_SECRET": "bare",
        "VAULTGATE_JWT_SECRET": "prefixed",
    }
    assert load_settings(environ=environ).jwt_secret == "prefixed"


def test_unknown_file_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / "config.toml"
    path.write_text('[jwt]\nsecret = "from-file"\nalgorithm = "RS256"\n')
    assert load_from_toml(path, Settings) == {"jwt_secret": "from-file"}
    assert "jwt_algorithm" in caplog.text
    assert load_settings(environ={"CONFIG_FILE": str(path)}).jwt_secret == "from-file"
