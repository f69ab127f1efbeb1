import os
import runpy

import bcrypt
import pytest

import check_db
from reset_superadmin_password import main, reset_superadmin_password


def test_reset_creates_then_updates(fake_db):
    assert reset_superadmin_password(fake_db, 'root', 'first-pass', bcrypt_rounds=4) == 'created'
    assert reset_superadmin_password(fake_db, 'root', 'second-pass', bcrypt_rounds=4) == 'updated'

    admins = fake_db.rows('super_admins')
    assert len(admins) == 1
    assert bcrypt.checkpw(b'second-pass', admins[0]['password_hash'].encode('utf-8'))


def test_reset_rejects_weak_password(fake_db):
    with pytest.raises(ValueError, match='at least 6 characters'):
        reset_superadmin_password(fake_db, 'root', 'abc', bcrypt_rounds=4)
    assert fake_db.rows('super_admins') == []


def test_reset_main_without_username(capsys):
    assert main(['reset_superadmin_password.py']) == 1
    assert 'Usage' in capsys.readouterr().out


def test_check_tables(fake_db, seed, capsys):
    seed.tenant('acme')
    fake_db.fail_next('teams', 'select')

    failed = check_db.check_tables(fake_db)
    assert failed == ['teams']
    out = capsys.readouterr().out
    assert '✅ tenants: 1 rows' in out
    assert '❌ teams' in out


def test_gunicorn_config_reads_environment(monkeypatch):
    monkeypatch.setenv('PORT', '9000')
    monkeypatch.setenv('WEB_CONCURRENCY', '4')
    monkeypatch.delenv('LOG_LEVEL', raising=False)
    settings = runpy.run_path(os.path.join(os.path.dirname(__file__), 'gunicorn.conf.py'))
    assert settings['bind'] == '0.0.0.0:9000'
    assert settings['workers'] == 4
    assert settings['loglevel'] == 'info'
    assert settings['preload_app'] is True
