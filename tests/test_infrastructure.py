import smtplib
from pathlib import Path
from unittest.mock import patch

import pytest

from rolemailer.application.rule_table import RuleTable
from rolemailer.domain.errors import RenderError, TransportError
from rolemailer.infrastructure.notify.email import SmtpTransport
from rolemailer.infrastructure.render.templates import JinjaTemplateRenderer

ROOT = Path(__file__).resolve().parent.parent


# --- Shipped configuration & templates ---

def test_shipped_configuration_is_valid():
    table = RuleTable.from_files(
        str(ROOT / "config" / "transitions.yaml"),
        str(ROOT / "config" / "events.yaml"),
        known_roles=["trial", "paid", "cancelled"],
    )
    assert table.errors == []
    assert {rule.event_name for rule in table.rules} == set(table.events)


def test_shipped_templates_render():
    table = RuleTable.from_files(str(ROOT / "config" / "transitions.yaml"), str(ROOT / "config" / "events.yaml"))
    renderer = JinjaTemplateRenderer(str(ROOT / "templates"))
    base = {"display_name": "Ada", "user_login": "ada", "site_url": "https://example.com", "token": "abc123"}

    for definition in table.events.values():
        if not definition.action.sends_message:
            continue
        body = renderer.render(definition.template_id, {**definition.extra_parameters, **base})
        assert "Hi Ada," in body

    survey = table.event("cancel_survey")
    body = renderer.render(survey.template_id, {**survey.extra_parameters, **base})
    assert "https://example.com/cancellation-survey?nonce=abc123" in body


# --- Renderer ---

@pytest.fixture
def renderer(tmp_path) -> JinjaTemplateRenderer:
    (tmp_path / "hello.html").write_text("<p>Hello {{ display_name }}</p>")
    return JinjaTemplateRenderer(str(tmp_path))


def test_render_escapes_html(renderer):
    assert renderer.render("hello.html", {"display_name": "<b>Bob</b>"}) == "<p>Hello &lt;b&gt;Bob&lt;/b&gt;</p>"


def test_missing_template_is_a_render_error(renderer):
    with pytest.raises(RenderError, match="template not found"):
        renderer.render("nope.html", {})


def test_missing_parameter_is_a_render_error(renderer):
    with pytest.raises(RenderError) as excinfo:
        renderer.render("hello.html", {})
    assert excinfo.value.template_id == "hello.html"


# --- SMTP transport ---

@pytest.fixture
def transport() -> SmtpTransport:
    return SmtpTransport(host="mail.test", port=2525, username="", use_tls=False, timeout=1, retries=2)


def test_send_builds_html_message_with_reply_to(transport):
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP:
        smtp = MockSMTP.return_value.__enter__.return_value
        transport.send("user1@example.com", "Welcome", "<p>hi</p>", reply_to="support@example.com")

    MockSMTP.assert_called_once_with("mail.test", 2525, timeout=1)
    message = smtp.send_message.call_args.args[0]
    assert message["To"] == "user1@example.com"
    assert message["Subject"] == "Welcome"
    assert "support@example.com" in str(message["Reply-To"])
    assert message.get_content_subtype() == "html"
    smtp.login.assert_not_called()


def test_login_and_starttls_when_configured():
    transport = SmtpTransport(host="mail.test", port=587, username="bot", password="pw", use_tls=True, retries=0)
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP:
        smtp = MockSMTP.return_value.__enter__.return_value
        transport.send("user1@example.com", "Hi", "<p>hi</p>")

    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("bot", "pw")


def test_disconnect_is_retried(transport):
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP, \
            patch("rolemailer.infrastructure.notify.email.time.sleep") as mock_sleep:
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.side_effect = [smtplib.SMTPServerDisconnected("gone"), None]
        transport.send("user1@example.com", "Hi", "<p>hi</p>")

    assert smtp.send_message.call_count == 2
    mock_sleep.assert_called_once()


def test_retries_are_bounded(transport):
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP, \
            patch("rolemailer.infrastructure.notify.email.time.sleep"):
        MockSMTP.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(TransportError):
            transport.send("user1@example.com", "Hi", "<p>hi</p>")

    assert MockSMTP.call_count == 3


def test_refused_recipient_is_not_retried(transport):
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP, \
            patch("rolemailer.infrastructure.notify.email.time.sleep") as mock_sleep:
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({"user1@example.com": (550, b"no such user")})
        with pytest.raises(TransportError, match="recipient refused"):
            transport.send("user1@example.com", "Hi", "<p>hi</p>")

    assert smtp.send_message.call_count == 1
    mock_sleep.assert_not_called()


def test_authentication_failure_is_not_retried(transport):
    with patch("rolemailer.infrastructure.notify.email.smtplib.SMTP") as MockSMTP, \
            patch("rolemailer.infrastructure.notify.email.time.sleep") as mock_sleep:
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with pytest.raises(TransportError):
            transport.send("user1@example.com", "Hi", "<p>hi</p>")

    mock_sleep.assert_not_called()
