import smtplib

import pytest

import database
import main
from config import Settings, load_settings
from errors import NotificationError
from notifications import Mailer, send_verification_email, verification_link


def test_root(client):
    assert client.get("/").json() == {"message": "Marketplace backend is running"}


def test_unexpected_errors_are_sanitized(client, caplog):
    def broken_db():
        raise RuntimeError("connection string with secrets")

    main.app.dependency_overrides[database.get_db] = broken_db

    resp = client.get("/product")

    assert resp.status_code == 500
    assert resp.json() == {"status": "Fail", "message": "Internal server error"}
    assert "connection string with secrets" in caplog.text


def test_missing_database_is_reported(client):
    del main.app.dependency_overrides[database.get_db]

    resp = client.get("/product")

    assert resp.status_code == 500
    assert resp.json() == {"status": "Fail", "message": "Database not configured"}


def test_unknown_route_uses_envelope(client):
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json()["status"] == "Fail"


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "from-env")
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")
    monkeypatch.setenv("SMTP_USE_TLS", "false")
    monkeypatch.delenv("SMTP_HOST", raising=False)

    settings = load_settings()

    assert settings.secret_key == "from-env"
    assert settings.access_token_expire_minutes == 15
    assert settings.smtp_use_tls is False
    assert settings.smtp_host is None


def test_verification_link_handles_missing_slash():
    assert verification_link(Settings(base_url="https://shop.example"), "abc") == "https://shop.example/auth/verify/abc"


def test_mailer_without_smtp_only_logs(caplog):
    caplog.set_level("INFO")
    Mailer(Settings()).send("a@example.com", "Hello", "Body")
    assert "a@example.com" in caplog.text


def test_mailer_wraps_transport_errors(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("nope")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    mailer = Mailer(Settings(smtp_host="mail.example.com"))

    with pytest.raises(NotificationError):
        mailer.send("a@example.com", "Hello", "Body")
    assert send_verification_email(mailer, Settings(), "a@example.com", "token") is False
