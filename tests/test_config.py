import logging
import os

import pytest

from visitor_service.config import load_config
from visitor_service.logging_config import get_logger, setup_logging
from visitor_service.main import _load_local_env, parse_args


def test_load_config_defaults(monkeypatch):
    for name in ('FIREBASE_PROJECT_ID', 'DASHBOARD_TIMEZONE', 'OVERDUE_HOURS', 'DEBUG', 'HTTP_PORT'):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config.firebase_project_id == ''
    assert config.http_port == 5050
    assert config.overdue_threshold_hours == 12.0
    assert config.debug_mode is False
    assert config.get_tzinfo() is None


def test_load_config_from_environment(monkeypatch):
    monkeypatch.setenv('FIREBASE_PROJECT_ID', 'gatehouse')
    monkeypatch.setenv('FIREBASE_DATABASE_URL', 'https://gatehouse.firebaseio.com/')
    monkeypatch.setenv('OVERDUE_HOURS', '8')
    monkeypatch.setenv('DASHBOARD_TIMEZONE', 'Africa/Nairobi')
    monkeypatch.setenv('DEBUG', 'TRUE')

    config = load_config()

    assert config.firebase_project_id == 'gatehouse'
    assert config.firebase_database_url == 'https://gatehouse.firebaseio.com'
    assert config.overdue_threshold_hours == 8.0
    assert config.debug_mode is True
    assert str(config.get_tzinfo()) == 'Africa/Nairobi'


def test_config_is_immutable(config):
    with pytest.raises(AttributeError):
        config.http_port = 8080


def test_parse_args_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv('FIREBASE_PROJECT_ID', 'gatehouse')
    monkeypatch.setenv('FIREBASE_DATABASE_URL', 'https://gatehouse.firebaseio.com')

    args = parse_args(['--port', '8000'])

    assert args.project_id == 'gatehouse'
    assert args.database_url == 'https://gatehouse.firebaseio.com'
    assert args.port == 8000
    assert args.debug is False


def test_parse_args_requires_project(monkeypatch):
    monkeypatch.delenv('FIREBASE_PROJECT_ID', raising=False)
    with pytest.raises(SystemExit):
        parse_args(['--database-url', 'https://x.firebaseio.com'])


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_adds_service_context(capsys, restore_root_logger):
    setup_logging('gate-test', debug=True)
    get_logger('visitor_service.test').info('hello')

    assert logging.getLogger().level == logging.DEBUG
    assert '[INFO] [service=gate-test] hello' in capsys.readouterr().out


def test_load_local_env_keeps_existing_variables(tmp_path, monkeypatch):
    env_file = tmp_path / '.env'
    env_file.write_text('FIREBASE_PROJECT_ID=from-file\nDASHBOARD_TIMEZONE=Africa/Nairobi\n')
    monkeypatch.setenv('FIREBASE_PROJECT_ID', 'from-shell')
    # recorded so the value loaded from the file is undone afterwards
    monkeypatch.setenv('DASHBOARD_TIMEZONE', 'placeholder')
    monkeypatch.delenv('DASHBOARD_TIMEZONE')

    assert _load_local_env(env_file) is True

    assert os.environ['FIREBASE_PROJECT_ID'] == 'from-shell'
    assert os.environ['DASHBOARD_TIMEZONE'] == 'Africa/Nairobi'


def test_load_local_env_without_file(tmp_path):
    assert _load_local_env(tmp_path / 'missing.env') is False
