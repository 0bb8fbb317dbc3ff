import pytest
from unittest.mock import MagicMock

from rolemailer.application.rule_table import RuleTable
from rolemailer.application.services.dispatch_service import AUDIT_CATEGORY, EventDispatcher
from rolemailer.domain.errors import RenderError, TransportError
from rolemailer.infrastructure.db.repository import ProcessedEventRepository, TransitionRepository

from conftest import EVENTS, TRANSITIONS


@pytest.fixture
def dispatcher(services) -> EventDispatcher:
    return services["dispatcher"]


def _processed(session_scope, user_id):
    with session_scope() as session:
        return {r.event_name: r.one_time for r in ProcessedEventRepository(session).list_for_user(user_id)}


def test_send_message_renders_sends_and_marks(dispatcher, rule_table, session_scope, users, mock_renderer, mock_transport):
    report = dispatcher.dispatch(rule_table, {"welcome": [users[0], users[1]]}, now=1000)

    outcome = report.outcomes["welcome"]
    assert outcome.sent == [users[0], users[1]]
    assert outcome.marked == [users[0], users[1]]
    assert report.errors == []
    assert mock_renderer.render.call_count == 2
    mock_transport.send.assert_any_call(
        "user1@example.com", "Welcome", "<p>welcome.html for user1@example.com</p>",
        reply_to="support@example.com",
    )
    assert _processed(session_scope, users[0]) == {"welcome": False}


def test_template_parameters(dispatcher, rule_table, users, mock_renderer):
    dispatcher.dispatch(rule_table, {"getting_started": [users[0]]}, now=1000)

    template_id, parameters = mock_renderer.render.call_args.args
    assert template_id == "getting_started.html"
    assert parameters["email_address"] == "user1@example.com"
    assert parameters["display_name"] == "User 1"
    assert parameters["user_login"] == "user1"
    assert parameters["site_url"] == "https://example.com"
    assert parameters["docs_url"] == "https://example.com/docs"
    assert parameters["from_address"] == "support@example.com"
    assert "token" not in parameters


def test_token_action_passes_the_users_token(dispatcher, rule_table, users, mock_renderer, services):
    dispatcher.dispatch(rule_table, {"cancel_survey": [users[2]]}, now=1000)

    _, parameters = mock_renderer.render.call_args.args
    token = services["nonce_ledger"].token_for(users[2])
    assert parameters["token"] == token
    assert len(token) == 32


def test_one_time_flag_is_stored(dispatcher, rule_table, session_scope, users):
    dispatcher.dispatch(rule_table, {"cancel_survey": [users[0]]}, now=1000)
    assert _processed(session_scope, users[0]) == {"cancel_survey": True}


def test_none_action_marks_without_sending(dispatcher, rule_table, session_scope, users, mock_transport):
    report = dispatcher.dispatch(rule_table, {"winback": [users[0], users[1]]}, now=1000)

    assert report.outcomes["winback"].marked == [users[0], users[1]]
    assert report.outcomes["winback"].sent == []
    mock_transport.send.assert_not_called()
    assert _processed(session_scope, users[1]) == {"winback": False}


def test_ignore_action_never_marks(dispatcher, rule_table, session_scope, users, mock_transport):
    report = dispatcher.dispatch(rule_table, {"downgrade_note": [users[0]]}, now=1000)

    assert report.outcomes["downgrade_note"].skipped is True
    assert report.errors == []
    mock_transport.send.assert_not_called()
    assert _processed(session_scope, users[0]) == {}


def test_unknown_event_is_reported_and_others_continue(dispatcher, rule_table, session_scope, users):
    report = dispatcher.dispatch(rule_table, {"mystery": [users[0]], "winback": [users[1]]}, now=1000)

    assert report.outcomes["mystery"].skipped is True
    assert "Unknown event mystery" in report.errors[0]
    assert report.outcomes["winback"].marked == [users[1]]
    assert _processed(session_scope, users[0]) == {}


def test_rejected_event_reports_its_configuration_error(dispatcher, session_scope, users):
    table = RuleTable.from_documents(TRANSITIONS, {**EVENTS, "welcome": {"action": "fax"}})

    report = dispatcher.dispatch(table, {"welcome": [users[0]]}, now=1000)

    assert report.outcomes["welcome"].skipped is True
    assert "unknown action fax" in report.outcomes["welcome"].error
    assert _processed(session_scope, users[0]) == {}


def test_render_failure_is_isolated_to_the_user(dispatcher, rule_table, session_scope, users, mock_renderer, mock_transport):
    def render(template_id, parameters):
        if parameters["email_address"] == "user1@example.com":
            raise RenderError(template_id, "boom")
        return "<p>ok</p>"
    mock_renderer.render.side_effect = render

    report = dispatcher.dispatch(rule_table, {"welcome": [users[0], users[1]]}, now=1000)

    outcome = report.outcomes["welcome"]
    assert outcome.sent == [users[1]]
    assert outcome.marked == [users[1]]
    assert outcome.failed[users[0]].startswith("render:")
    assert mock_transport.send.call_count == 1
    assert _processed(session_scope, users[0]) == {}


def test_missing_user_is_not_marked(dispatcher, rule_table, users):
    report = dispatcher.dispatch(rule_table, {"welcome": [users[0], 999]}, now=1000)

    outcome = report.outcomes["welcome"]
    assert outcome.marked == [users[0]]
    assert "User 999 not found" in outcome.failed[999]


def test_transport_failure_marks_by_default(dispatcher, rule_table, session_scope, users, mock_transport):
    mock_transport.send.side_effect = TransportError("user1@example.com", "refused")

    report = dispatcher.dispatch(rule_table, {"welcome": [users[0]]}, now=1000)

    outcome = report.outcomes["welcome"]
    assert outcome.sent == []
    assert outcome.marked == [users[0]]
    assert outcome.failed[users[0]].startswith("transport:")
    assert _processed(session_scope, users[0]) == {"welcome": False}


def test_transport_failure_can_be_retried(services, rule_table, session_scope, users, mock_transport):
    mock_transport.send.side_effect = TransportError("user1@example.com", "refused")
    dispatcher = EventDispatcher(
        session_scope,
        renderer=services["renderer"],
        transport=mock_transport,
        directory=services["directory"],
        nonce_ledger=services["nonce_ledger"],
        mark_processed_on_transport_failure=False,
    )

    report = dispatcher.dispatch(rule_table, {"welcome": [users[0]]}, now=1000)

    assert report.outcomes["welcome"].marked == []
    assert _processed(session_scope, users[0]) == {}


def test_unexpected_error_leaves_user_pending(dispatcher, rule_table, session_scope, users, mock_transport):
    mock_transport.send.side_effect = RuntimeError("socket exploded")

    report = dispatcher.dispatch(rule_table, {"welcome": [users[0]]}, now=1000)

    assert report.outcomes["welcome"].failed[users[0]].startswith("internal:")
    assert _processed(session_scope, users[0]) == {}


def test_sent_messages_are_audited(dispatcher, rule_table, users, services):
    dispatcher.dispatch(rule_table, {"welcome": [users[0]]}, now=1000)

    history = services["audit_service"].history_for_user(users[0])
    assert len(history) == 1
    assert history[0]["category"] == AUDIT_CATEGORY
    assert history[0]["message"] == "welcome -> user1@example.com"


def test_audit_failure_does_not_block_marking(services, rule_table, session_scope, users):
    audit = MagicMock()
    audit.record.side_effect = RuntimeError("audit down")
    dispatcher = EventDispatcher(
        session_scope,
        renderer=services["renderer"],
        transport=services["transport"],
        directory=services["directory"],
        nonce_ledger=services["nonce_ledger"],
        audit=audit,
    )

    report = dispatcher.dispatch(rule_table, {"welcome": [users[0]]}, now=1000)

    assert report.outcomes["welcome"].marked == [users[0]]


def test_user_whose_transition_changed_mid_pass_is_not_marked(dispatcher, rule_table, session_scope, users):
    with session_scope() as session:
        TransitionRepository(session).replace(users[0], "trial", "paid", 1000)
        TransitionRepository(session).replace(users[1], "trial", "paid", 1000)
    observed = {users[0]: 1000, users[1]: 1000}

    with session_scope() as session:
        TransitionRepository(session).replace(users[0], "paid", "cancelled", 1005)

    report = dispatcher.dispatch(rule_table, {"winback": [users[0], users[1]]}, now=1010, observed=observed)

    assert report.outcomes["winback"].marked == [users[1]]
    assert _processed(session_scope, users[0]) == {}


def test_mark_processed_replaces_existing_markers(dispatcher, session_scope, users):
    dispatcher.mark_processed("welcome", [users[0]], one_time=False)
    dispatcher.mark_processed("welcome", [users[0], users[0]], one_time=True)

    assert _processed(session_scope, users[0]) == {"welcome": True}


def test_report_follows_due_order(services, rule_table, session_scope, users, mock_transport):
    dispatcher = EventDispatcher(
        session_scope,
        renderer=services["renderer"],
        transport=mock_transport,
        directory=services["directory"],
        nonce_ledger=services["nonce_ledger"],
    )
    due = {"welcome": [users[0]], "winback": [users[1]], "downgrade_note": [users[2]]}

    report = dispatcher.dispatch(rule_table, due, now=1000)

    assert list(report.outcomes) == ["welcome", "winback", "downgrade_note"]
    assert report.sent_count == 1
    assert report.marked_count == 2


def test_legacy_token_event_also_passes_nonce(dispatcher, users, mock_renderer):
    table = RuleTable.from_documents(
        {},
        {"survey": {"action": "email_with_nonce", "template": "survey.html",
                    "subject": "Why?", "from": "support@example.com"}},
    )

    dispatcher.dispatch(table, {"survey": [users[0]]}, now=1000)

    _, parameters = mock_renderer.render.call_args.args
    assert parameters["nonce"] == parameters["token"]
    assert len(parameters["nonce"]) == 32


def test_heartbeat_runs_before_each_event_and_can_abort(dispatcher, rule_table, session_scope, users):
    heartbeat = MagicMock()
    dispatcher.dispatch(rule_table, {"winback": [users[0]], "welcome": [users[1]]}, now=1000, heartbeat=heartbeat)
    assert heartbeat.call_count == 2

    heartbeat = MagicMock(side_effect=RuntimeError("lease lost"))
    with pytest.raises(RuntimeError, match="lease lost"):
        dispatcher.dispatch(rule_table, {"winback": [users[2]]}, now=1000, heartbeat=heartbeat)
    assert _processed(session_scope, users[2]) == {}
