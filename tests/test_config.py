import pytest

from config import Settings, load_settings
from database import database_url


def test_defaults_without_file_or_environment(tmp_path):
    s = load_settings(tmp_path / "missing.env", environ={})
    assert s.db_url == "mysql+pymysql://localhost:3306/hms"
    assert s.db_user == "root"
    assert s.db_timeout == 10
    assert s.page_size == 25
    assert s.db_echo is False


def test_environment_beats_file_beats_defaults(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("DB_URL=mysql://db:3306/clinic\nDB_USER=file_user\nDB_PASSWORD=\nDB_ECHO=yes\n")
    s = load_settings(env_file, environ={"DB_USER": "env_user", "HMS_PAGE_SIZE": "50"})
    assert s.db_url == "mysql://db:3306/clinic"
    assert s.db_user == "env_user"
    assert s.db_password == ""        # blank in the file falls through to the default
    assert s.db_echo is True
    assert s.page_size == 50


def test_bad_numbers_are_reported(tmp_path):
    with pytest.raises(ValueError, match="DB_TIMEOUT"):
        load_settings(tmp_path / "none", environ={"DB_TIMEOUT": "soon"})
    with pytest.raises(ValueError, match="HMS_PAGE_SIZE"):
        load_settings(tmp_path / "none", environ={"HMS_PAGE_SIZE": "0"})


def test_jdbc_url_maps_to_pymysql():
    url = database_url(Settings(
        db_url="jdbc:mysql://db.local:3306/hms?useSSL=false&serverTimezone=UTC",
        db_user="app", db_password="s3cret",
    ))
    assert url.drivername == "mysql+pymysql"
    assert (url.host, url.port, url.database) == ("db.local", 3306, "hms")
    assert (url.username, url.password) == ("app", "s3cret")
    assert not url.query


def test_credentials_in_url_are_kept():
    url = database_url(Settings(db_url="mysql+pymysql://u:p@h/hms", db_user="other", db_password="x"))
    assert (url.username, url.password) == ("u", "p")


def test_sqlite_url_ignores_credentials():
    url = database_url(Settings(db_url="sqlite://", db_user="root", db_password="pw"))
    assert url.username is None
