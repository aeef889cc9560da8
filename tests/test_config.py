import pytest

from core.config import Settings, settings_from_env


def test_allow_list_cannot_expose_application_database():
    with pytest.raises(ValueError):
        Settings(allowed_databases=frozenset({"HR", "APPDATA"}))


def test_allow_list_cannot_expose_system_databases():
    with pytest.raises(ValueError):
        Settings(allowed_databases=frozenset({"master"}))


def test_url_template_needs_placeholder():
    with pytest.raises(ValueError):
        Settings(data_database_url_template="sqlite:///./data.db")


def test_page_sizes_must_be_consistent():
    with pytest.raises(ValueError):
        Settings(default_page_size=50, max_page_size=10)


def test_database_url_and_allow_list():
    settings = Settings(
        data_database_url_template="mysql+pymysql://app:pw@db:3306/{database}",
        allowed_databases=frozenset({"HR"}),
    )
    assert settings.database_url("HR") == "mysql+pymysql://app:pw@db:3306/HR"
    assert settings.is_database_allowed("HR")
    assert not settings.is_database_allowed("hr")
    assert not settings.is_database_allowed("Sales")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("ALLOWED_DATABASES", "HR, Sales,")
    monkeypatch.setenv("MAX_PAGE_SIZE", "500")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("SECRET_KEY", "s3cret")

    settings = settings_from_env()

    assert settings.allowed_databases == frozenset({"HR", "Sales"})
    assert settings.max_page_size == 500
    assert settings.default_page_size == 100
    assert settings.debug is True
    assert settings.secret_key == "s3cret"
