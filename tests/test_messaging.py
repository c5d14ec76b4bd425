from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import ExternalServiceError, ServiceUnavailableError, ValidationError
from service_modules.email_service import EmailService
from service_modules.messaging_service import get_messaging_service
from service_modules.whatsapp_service import WhatsAppService


def _configured_whatsapp():
    with patch.dict("os.environ", {"WHATSAPP_TOKEN": "token", "WHATSAPP_PHONE_NUMBER_ID": "123"}):
        return WhatsAppService()


@pytest.mark.parametrize("raw, expected", [
    ("+62 812-3456-789", "+628123456789"),
    ("0812 3456 789", "+628123456789"),
    ("628123456789", "+628123456789"),
    ("8123456789", "+628123456789"),
])
def test_normalize_phone(raw, expected):
    assert WhatsAppService().normalize_phone(raw) == expected


def test_normalize_phone_rejects_garbage():
    with pytest.raises(ValidationError):
        WhatsAppService().normalize_phone("12ab")


def test_whatsapp_not_configured():
    with pytest.raises(ServiceUnavailableError):
        WhatsAppService().send_text("08123456789", "hi")


def test_whatsapp_send_text_posts_to_graph_api():
    service = _configured_whatsapp()
    response = MagicMock(status_code=200)
    response.json.return_value = {"messages": [{"id": "wamid.1"}]}
    with patch("service_modules.whatsapp_service.requests.post", return_value=response) as post:
        result = service.send_text("0812 3456 789", "Hello")

    assert result == {"phone": "+628123456789", "message_id": "wamid.1"}
    assert post.call_args.kwargs["json"]["to"] == "628123456789"
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer token"


def test_whatsapp_provider_failure():
    service = _configured_whatsapp()
    with patch("service_modules.whatsapp_service.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(ExternalServiceError):
            service.send_text("08123456789", "Hello")


def test_whatsapp_bulk_keeps_going():
    service = _configured_whatsapp()
    response = MagicMock(status_code=200)
    response.json.return_value = {"messages": [{"id": "wamid.2"}]}
    with patch("service_modules.whatsapp_service.requests.post", return_value=response):
        result = service.send_bulk(["08123456789", "bad!"], "Hello")
    assert result["sent"] == 1
    assert result["failed"] == 1
    assert result["errors"][0]["phone"] == "bad!"


def test_admin_email_requires_smtp(admin_client):
    response = admin_client.post("/api/admin/email/send", json={"subject": "Hi", "message": "Hello"})
    assert response.status_code == 503


def test_admin_email_to_selected_members(member, admin_client):
    service = get_messaging_service()
    with patch.object(service.email, "is_configured", return_value=True), \
            patch.object(service.email, "send_custom_email", return_value=True) as send:
        response = admin_client.post("/api/admin/email/send", json={
            "subject": "Holiday hours", "message": "Closed on Monday", "user_ids": [member.id]
        })
    assert response.status_code == 200
    assert response.json()["sent"] == 1
    assert send.call_args.args[0] == member.email


def test_admin_email_unknown_member(admin_client):
    service = get_messaging_service()
    with patch.object(service.email, "is_configured", return_value=True):
        response = admin_client.post("/api/admin/email/send", json={
            "subject": "x", "message": "y", "user_ids": ["missing"]
        })
    assert response.status_code == 404


def test_admin_whatsapp_needs_recipients(admin_client):
    assert admin_client.post("/api/admin/whatsapp/send", json={"message": "hi"}).status_code == 400


def test_inactivity_reminders(member, make_user, admin_client, storage):
    visited = make_user()
    storage.replace_active_membership(
        visited.id, storage.get_active_membership(member.id).plan_id, "2000-01-01T00:00:00", "2999-01-01T00:00:00"
    )
    storage.create_check_in(user_id=visited.id)

    response = admin_client.post("/api/admin/send-inactivity-reminders", json={"days_inactive": 7})
    assert response.status_code == 200
    assert response.json()["notified"] == 1
    assert response.json()["emailed"] == 0

    titles = [n.title for n in storage.list_notifications(member.id)]
    assert "We miss you!" in titles
    assert storage.list_notifications(visited.id) == []


def test_email_service_reports_smtp_failure():
    with patch.dict("os.environ", {"SMTP_HOST": "smtp.test", "SMTP_USER": "u", "SMTP_PASSWORD": "p"}):
        service = EmailService()
    with patch("service_modules.email_service.smtplib.SMTP", side_effect=OSError("refused")):
        assert service.send_custom_email("a@example.com", "A", "Subject", "Body") is False
