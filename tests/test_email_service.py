"""Tests for SMTP password storage and outgoing mail."""

import pytest
from cryptography.fernet import Fernet

from mechhub import config, email_service
from mechhub.email_service import EmailDeliveryError, decrypt_password, encrypt_password, is_smtp_configured, send_email
from mechhub.models import WorkshopConfig


def _workshop_config(**overrides):
    values = {
        "workshop_name": "Taller Demo",
        "smtp_host": "smtp.taller.test",
        "smtp_port": 587,
        "smtp_user": "taller@taller.test",
        "smtp_password": "smtp-secret",
        "smtp_use_tls": True,
    }
    values.update(overrides)
    return WorkshopConfig(**values)


class TestPasswordEncryption:
    """Tests for encrypt_password / decrypt_password."""

    def test_round_trip_with_key(self, monkeypatch):
        monkeypatch.setattr(config, "SMTP_ENCRYPTION_KEY", Fernet.generate_key().decode())

        stored = encrypt_password("smtp-secret")

        assert stored != "smtp-secret"
        assert decrypt_password(stored) == "smtp-secret"

    def test_plain_text_without_key(self, monkeypatch):
        monkeypatch.setattr(config, "SMTP_ENCRYPTION_KEY", "")
        assert encrypt_password("smtp-secret") == "smtp-secret"
        assert decrypt_password("smtp-secret") == "smtp-secret"

    def test_legacy_plain_password_is_returned(self, monkeypatch):
        monkeypatch.setattr(config, "SMTP_ENCRYPTION_KEY", Fernet.generate_key().decode())
        assert decrypt_password("stored-before-key") == "stored-before-key"

    def test_empty_value(self):
        assert decrypt_password(None) == ""


class TestSendEmail:
    """Tests for send_email against a fake SMTP server."""

    def test_not_configured_returns_false(self, fake_smtp):
        assert is_smtp_configured(_workshop_config(smtp_host=None)) is False
        assert send_email(_workshop_config(smtp_password=None), "juan@example.com", "Hola", "Texto") is False
        assert send_email(None, "juan@example.com", "Hola", "Texto") is False
        assert fake_smtp.sent == []

    def test_sends_with_attachment(self, fake_smtp):
        sent = send_email(
            _workshop_config(),
            "juan@example.com",
            "Orden lista",
            "Tu vehículo está listo",
            attachments=[{"filename": "orden_7.pdf", "content": b"%PDF-1.4"}],
        )

        assert sent is True
        message = fake_smtp.sent[0]
        assert message["from"] == "taller@taller.test"
        assert message["to"] == ["juan@example.com"]
        assert message["password"] == "smtp-secret"
        assert "Subject: Orden lista" in message["message"]
        assert 'filename="orden_7.pdf"' in message["message"]

    def test_transport_failure_raises(self, fake_smtp):
        fake_smtp.fail = True
        with pytest.raises(EmailDeliveryError):
            send_email(_workshop_config(), "juan@example.com", "Hola", "Texto")


class TestSmtpConnectionCheck:
    """Tests for the SMTP settings check used by the configuration screen."""

    def test_success(self, fake_smtp):
        ok, message = email_service.test_smtp_connection("smtp.taller.test", 587, "taller@taller.test", "secret")
        assert ok is True
        assert message == "SMTP connection successful"
        assert fake_smtp.sent == []

    def test_sends_check_message(self, fake_smtp):
        ok, _ = email_service.test_smtp_connection(
            "smtp.taller.test", 587, "taller@taller.test", "secret", send_to="owner@taller.test"
        )
        assert ok is True
        assert fake_smtp.sent[0]["to"] == ["owner@taller.test"]

    def test_disconnect_is_reported(self, fake_smtp):
        fake_smtp.fail = True
        ok, message = email_service.test_smtp_connection(
            "smtp.taller.test", 587, "taller@taller.test", "secret", send_to="owner@taller.test"
        )
        assert ok is False
        assert "disconnected" in message
