"""Tests for the consent workers and the Slack interaction callback."""
import json
import time
import pytest
from datetime import timedelta
from urllib.parse import urlencode

from call_intelligence.core.security import hmac_sha256_hex
from call_intelligence.db.models import utcnow
from call_intelligence.services.consent.messages import APPROVE_ACTION, DECLINE_ACTION, button_value
from call_intelligence.services.persistence.consent import ConsentPersistenceService
from call_intelligence.services.persistence.jobs import JobQueue, JobType
from call_intelligence.services.workers.base import COMPLETED, FAILED, RETRYING
from call_intelligence.services.workers.consent import (
    ConsentExpireWorker,
    ConsentReminderWorker,
    ConsentRequestWorker,
)

RECORDING = "https://api.telavox.se/recordings/r-1"


async def _run(worker_cls, db, app_settings, integrations, job_type, payload=None, **job_fields):
    job = await JobQueue(db).enqueue(job_type, "call-1", "org-1", payload=payload, **job_fields)
    outcome = await worker_cls(db, app_settings, integrations).run(job)
    await db.refresh(job)
    return outcome, job


async def _job_types(db, call_id="call-1"):
    return [job.job_type for job in await JobQueue(db).jobs_for_call(call_id)]


class TestConsentRequestWorker:
    """Test sending the consent prompt."""

    @pytest.mark.asyncio
    async def test_prompt_sent_to_mapped_slack_user(self, test_db, test_settings, integrations, seed):
        """Test the agent's Slack user gets the prompt and follow-ups are scheduled."""
        await seed.mapping("agent-1", "U123")
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING, from_number="0701234567")

        outcome, _ = await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert outcome == COMPLETED
        posted = integrations.slack.posted[0]
        assert posted["channel"] == "U123"
        assert posted["token"] == "xoxb-test"
        assert posted["text"] == "Approve transcription for call call-1?"
        buttons = posted["blocks"][-1]["elements"]
        assert [button["action_id"] for button in buttons] == [APPROVE_ACTION, DECLINE_ACTION]

        request = await ConsentPersistenceService(test_db).get_pending_for_call("call-1")
        assert json.loads(buttons[0]["value"]) == {"requestId": request.id, "call_id": "call-1"}
        assert request.slack_channel_id == "DU123"
        assert request.slack_message_ts == "1700000000.000001"
        assert timedelta(hours=23) < request.expires_at - utcnow() <= timedelta(hours=24)

        jobs = {job.job_type: job for job in await JobQueue(test_db).jobs_for_call("call-1")}
        assert jobs["consent.reminder"].payload == {"consent_request_id": request.id}
        assert jobs["consent.reminder"].scheduled_at == request.sent_at + timedelta(hours=2)
        assert jobs["consent.expire"].scheduled_at == request.expires_at

    @pytest.mark.asyncio
    async def test_no_reminder_after_deadline(self, test_db, test_settings, integrations, seed):
        """Test no reminder is scheduled when it would fall after the expiry."""
        await seed.setting("consent_timeout_hours", "1")
        await seed.mapping()
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING)

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        types = await _job_types(test_db)
        assert "consent.expire" in types
        assert "consent.reminder" not in types

    @pytest.mark.asyncio
    async def test_agent_without_slack_mapping_declined(self, test_db, test_settings, integrations, seed):
        """Test a call whose agent has no Slack user is never transcribed."""
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)

        outcome, _ = await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert outcome == COMPLETED
        assert integrations.slack.posted == []
        await test_db.refresh(session)
        assert session.consent_status == "declined"
        assert session.transcription_status == "failed"
        assert session.last_error == "No Slack mapping for agent"
        assert await _job_types(test_db) == ["consent.request"]

    @pytest.mark.asyncio
    async def test_missing_agent_declined(self, test_db, test_settings, integrations, seed):
        """Test a call without an agent cannot be approved by anyone."""
        session = await seed.session(recording_url=RECORDING)

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        await test_db.refresh(session)
        assert session.consent_status == "declined"
        assert session.last_error == "Missing agent_user_id for consent"

    @pytest.mark.asyncio
    async def test_consent_disabled_goes_to_transcription(self, test_db, test_settings, integrations, seed):
        """Test consent switched off marks it not required."""
        await seed.setting("consent_enabled", "false")
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        await test_db.refresh(session)
        assert session.consent_status == "not_required"
        assert "stt.request" in await _job_types(test_db)
        assert integrations.slack.posted == []

    @pytest.mark.asyncio
    async def test_known_contact_auto_approved_when_enabled(self, test_db, test_settings, integrations, seed):
        """Test opt-in auto approval for calls with a known HubSpot contact."""
        await seed.setting("consent_auto_approve_known_contacts", "true")
        await seed.mapping()
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING, crm_contact_id="c-1")

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        await test_db.refresh(session)
        assert session.consent_status == "not_required"
        assert integrations.slack.posted == []

    @pytest.mark.asyncio
    async def test_contact_matched_in_hubspot_auto_approved(self, test_db, test_settings, integrations, seed):
        """Test auto approval looks the customer up in HubSpot when no contact is stored yet."""
        await seed.setting("consent_auto_approve_known_contacts", "true")
        await seed.mapping()
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING, from_number="0701234567")
        integrations.hubspot.contact_id = "c-1"

        outcome, _ = await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert outcome == COMPLETED
        assert "+46701234567" in integrations.hubspot.searches[0]
        await test_db.refresh(session)
        assert session.crm_contact_id == "c-1"
        assert session.consent_status == "not_required"
        assert integrations.slack.posted == []

    @pytest.mark.asyncio
    async def test_unmatched_number_still_asked_when_auto_approving(self, test_db, test_settings, integrations, seed):
        """Test a number HubSpot does not know goes to the agent as usual."""
        await seed.setting("consent_auto_approve_known_contacts", "true")
        await seed.mapping()
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING, from_number="0701234567")

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert len(integrations.hubspot.searches) == 1
        assert len(integrations.slack.posted) == 1
        await test_db.refresh(session)
        assert session.crm_contact_id is None
        assert session.consent_status == "pending"

    @pytest.mark.asyncio
    async def test_known_contact_asked_by_default(self, test_db, test_settings, integrations, seed):
        """Test a known contact still needs approval unless auto approval is on."""
        await seed.mapping()
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING, crm_contact_id="c-1")

        await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert len(integrations.slack.posted) == 1

    @pytest.mark.asyncio
    async def test_prompt_not_sent_twice(self, test_db, test_settings, integrations, seed):
        """Test an already delivered prompt is not posted again."""
        await seed.mapping()
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        await seed.consent_request()

        outcome, _ = await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)

        assert outcome == COMPLETED
        assert integrations.slack.posted == []

    @pytest.mark.asyncio
    async def test_slack_failure_retries_with_same_request(self, test_db, test_settings, integrations, seed):
        """Test a failed post is retried without creating a second request."""
        await seed.mapping()
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        integrations.slack.fail_posts = True

        outcome, job = await _run(ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST)
        assert outcome == RETRYING
        first = await ConsentPersistenceService(test_db).get_pending_for_call("call-1")
        assert first.slack_message_ts is None

        integrations.slack.fail_posts = False
        outcome = await ConsentRequestWorker(test_db, test_settings, integrations).run(job)

        assert outcome == COMPLETED
        request = await ConsentPersistenceService(test_db).get_pending_for_call("call-1")
        assert request.id == first.id
        assert request.slack_message_ts is not None
        assert len(integrations.slack.posted) == 1

    @pytest.mark.asyncio
    async def test_undeliverable_prompt_declines_consent(self, test_db, test_settings, integrations, seed):
        """Test the last failed post closes the request and the session instead of leaving them pending."""
        await seed.mapping()
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        integrations.slack.fail_posts = True

        outcome, job = await _run(
            ConsentRequestWorker, test_db, test_settings, integrations, JobType.CONSENT_REQUEST, max_attempts=1
        )

        assert outcome == FAILED
        assert job.status == "failed"
        consent = ConsentPersistenceService(test_db)
        assert await consent.get_pending_for_call("call-1") is None
        await test_db.refresh(session)
        assert session.consent_status == "declined"
        assert session.transcription_status == "failed"
        assert session.last_error
        assert "stt.request" not in await _job_types(test_db)


class TestConsentReminderWorker:
    """Test the reminder stage."""

    @pytest.mark.asyncio
    async def test_reminder_sent_once(self, test_db, test_settings, integrations, seed):
        """Test one reminder per request."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request()
        payload = {"consent_request_id": request.id}

        await _run(ConsentReminderWorker, test_db, test_settings, integrations, JobType.CONSENT_REMINDER, payload)
        await _run(ConsentReminderWorker, test_db, test_settings, integrations, JobType.CONSENT_REMINDER, payload)

        assert len(integrations.slack.posted) == 1
        assert integrations.slack.posted[0]["channel"] == "U123"
        assert integrations.slack.posted[0]["text"].startswith("Reminder:")
        await test_db.refresh(request)
        assert request.reminder_sent_at is not None

    @pytest.mark.asyncio
    async def test_no_reminder_for_answered_request(self, test_db, test_settings, integrations, seed):
        """Test answered requests are left alone."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request(status="approved")

        outcome, _ = await _run(
            ConsentReminderWorker, test_db, test_settings, integrations, JobType.CONSENT_REMINDER,
            {"consent_request_id": request.id},
        )

        assert outcome == COMPLETED
        assert integrations.slack.posted == []

    @pytest.mark.asyncio
    async def test_no_reminder_past_deadline(self, test_db, test_settings, integrations, seed):
        """Test a request past its expiry gets no reminder."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request(expires_in=timedelta(minutes=-1))

        await _run(
            ConsentReminderWorker, test_db, test_settings, integrations, JobType.CONSENT_REMINDER,
            {"consent_request_id": request.id},
        )

        assert integrations.slack.posted == []


class TestConsentExpireWorker:
    """Test the expiry stage."""

    @pytest.mark.asyncio
    async def test_unanswered_request_expires(self, test_db, test_settings, integrations, seed):
        """Test the timeout blocks transcription and edits the prompt."""
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        request = await seed.consent_request(expires_in=timedelta(seconds=-1))

        outcome, _ = await _run(
            ConsentExpireWorker, test_db, test_settings, integrations, JobType.CONSENT_EXPIRE,
            {"consent_request_id": request.id},
        )

        assert outcome == COMPLETED
        await test_db.refresh(request)
        assert request.status == "expired"
        assert request.response_source == "timeout"
        await test_db.refresh(session)
        assert session.consent_status == "expired"
        assert session.transcription_status == "failed"
        assert session.last_error == "Consent timeout"
        assert "stt.request" not in await _job_types(test_db)

        update = integrations.slack.updated[0]
        assert update["channel"] == "DU123"
        assert update["ts"] == "1700000000.000001"
        assert update["text"] == "Consent expired. Transcription will not proceed."

    @pytest.mark.asyncio
    async def test_not_due_yet(self, test_db, test_settings, integrations, seed):
        """Test an early run leaves the request pending."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request(expires_in=timedelta(hours=1))

        await _run(
            ConsentExpireWorker, test_db, test_settings, integrations, JobType.CONSENT_EXPIRE,
            {"consent_request_id": request.id},
        )

        await test_db.refresh(request)
        assert request.status == "pending"
        assert integrations.slack.updated == []

    @pytest.mark.asyncio
    async def test_expire_after_approval_is_noop(self, test_db, test_settings, integrations, seed):
        """Test an approval that won the race is not overwritten by the timeout."""
        session = await seed.session(agent_user_id="agent-1", consent_status="approved")
        request = await seed.consent_request(status="approved", expires_in=timedelta(seconds=-1))

        await _run(
            ConsentExpireWorker, test_db, test_settings, integrations, JobType.CONSENT_EXPIRE,
            {"consent_request_id": request.id},
        )

        await test_db.refresh(request)
        await test_db.refresh(session)
        assert request.status == "approved"
        assert session.consent_status == "approved"
        assert integrations.slack.updated == []


def _interaction(request_id, action_id=APPROVE_ACTION, user_id="U123", call_id="call-1", **fields):
    payload = {
        "type": "block_actions",
        "user": {"id": user_id},
        "actions": [{"action_id": action_id, "value": button_value(request_id, call_id)}],
    }
    payload.update(fields)
    return payload


async def _post_interaction(client, payload, secret="slack-secret", timestamp=None, body=None):
    raw = body if body is not None else urlencode({"payload": json.dumps(payload)}).encode("utf-8")
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = "v0=" + hmac_sha256_hex(secret, f"v0:{ts}:".encode("utf-8") + raw)
    return await client.post(
        "/webhooks/slack/interactions",
        content=raw,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Slack-Request-Timestamp": ts,
            "X-Slack-Signature": signature,
        },
    )


class TestSlackInteractions:
    """Test the approve/decline callback."""

    @pytest.mark.asyncio
    async def test_approve_queues_transcription(self, client, test_db, integrations, seed):
        """Test approval resolves the request and queues transcription."""
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id))

        assert response.status_code == 200
        assert response.json() == {"status": "approved"}
        await test_db.refresh(request)
        assert request.status == "approved"
        assert request.response_source == "slack"
        assert request.response_metadata == {"user_id": "U123", "action_id": APPROVE_ACTION}
        await test_db.refresh(session)
        assert session.consent_status == "approved"
        assert await _job_types(test_db) == ["stt.request"]

        update = integrations.slack.updated[0]
        assert update["text"] == "Transcription approved."
        assert update["blocks"][0]["text"]["text"] == "*Transcription decision:* Approved"

    @pytest.mark.asyncio
    async def test_encoded_payload_among_other_fields(self, client, test_db, seed):
        """Test the payload field is decoded from a form carrying other fields and escaped characters."""
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        request = await seed.consent_request()
        payload = _interaction(request.id, user={"id": "U123", "name": "Åsa & Per+1 = ok?"})
        body = urlencode(
            {"token": "legacy", "payload": json.dumps(payload), "team_domain": "acme"}
        ).encode("utf-8")

        response = await _post_interaction(client, None, body=body)

        assert response.status_code == 200
        assert response.json() == {"status": "approved"}
        await test_db.refresh(session)
        assert session.consent_status == "approved"

    @pytest.mark.asyncio
    async def test_decline_blocks_transcription(self, client, test_db, integrations, seed):
        """Test a decline fails the transcription and queues nothing."""
        session = await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id, DECLINE_ACTION))

        assert response.json() == {"status": "declined"}
        await test_db.refresh(session)
        assert session.consent_status == "declined"
        assert session.transcription_status == "failed"
        assert await _job_types(test_db) == []
        assert integrations.slack.updated[0]["text"] == "Transcription declined."

    @pytest.mark.asyncio
    async def test_double_click_processed_once(self, client, test_db, integrations, seed):
        """Test a second press reports the request as already handled."""
        await seed.session(agent_user_id="agent-1", recording_url=RECORDING)
        request = await seed.consent_request()

        first = await _post_interaction(client, _interaction(request.id))
        second = await _post_interaction(client, _interaction(request.id))

        assert first.json() == {"status": "approved"}
        assert second.json() == {"status": "already_processed"}
        assert await _job_types(test_db) == ["stt.request"]
        assert integrations.slack.updated[1]["blocks"][0]["text"]["text"] == "*Transcription decision:* Already handled"

    @pytest.mark.asyncio
    async def test_press_after_expiry(self, client, test_db, seed):
        """Test a late approval cannot revive an expired request."""
        session = await seed.session(agent_user_id="agent-1", consent_status="expired")
        request = await seed.consent_request(status="expired")

        response = await _post_interaction(client, _interaction(request.id))

        assert response.json() == {"status": "already_processed"}
        await test_db.refresh(session)
        assert session.consent_status == "expired"

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, client, test_db, seed):
        """Test only the mapped Slack user can answer."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id, user_id="U999"))

        assert response.status_code == 403
        await test_db.refresh(request)
        assert request.status == "pending"

    @pytest.mark.asyncio
    async def test_slack_update_failure_not_surfaced(self, client, integrations, seed):
        """Test the decision stands when editing the prompt fails."""
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request()
        integrations.slack.fail_updates = True

        response = await _post_interaction(client, _interaction(request.id))

        assert response.status_code == 200
        assert response.json() == {"status": "approved"}

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client, seed):
        """Test a request signed with another secret is rejected."""
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id), secret="wrong")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, client, seed):
        """Test replayed requests older than five minutes are rejected."""
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id), timestamp=int(time.time()) - 600)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_signing_secret(self, client, test_settings, use_settings, seed):
        """Test the endpoint refuses to run unsigned."""
        use_settings(test_settings.model_copy(update={"slack_signing_secret": None}))
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id))

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_signing_secret_from_settings_table(self, client, test_settings, use_settings, seed):
        """Test the settings table provides the secret when the environment does not."""
        use_settings(test_settings.model_copy(update={"slack_signing_secret": None}))
        await seed.setting("slack_signing_secret", "table-secret")
        await seed.session(agent_user_id="agent-1")
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id), secret="table-secret")

        assert response.json() == {"status": "approved"}

    @pytest.mark.asyncio
    async def test_missing_payload(self, client):
        """Test a form without a payload field."""
        response = await _post_interaction(client, None, body=urlencode({"foo": "bar"}).encode("utf-8"))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_other_interaction_types_ignored(self, client, seed):
        """Test non button interactions are acknowledged."""
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id, type="view_submission"))

        assert response.json() == {"ok": True, "ignored": True}

    @pytest.mark.asyncio
    async def test_unknown_action_ignored(self, client, seed):
        """Test buttons we did not send are acknowledged."""
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id, action_id="open_call"))

        assert response.json() == {"ok": True, "ignored": True}

    @pytest.mark.asyncio
    async def test_unknown_request(self, client):
        """Test a button for a request that does not exist."""
        response = await _post_interaction(client, _interaction(999))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_call_id_mismatch(self, client, seed):
        """Test the button's call id must match the request."""
        request = await seed.consent_request()

        response = await _post_interaction(client, _interaction(request.id, call_id="call-2"))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_identifiers(self, client):
        """Test a button value without ids."""
        payload = {
            "type": "block_actions",
            "user": {"id": "U123"},
            "actions": [{"action_id": APPROVE_ACTION, "value": "{}"}],
        }

        response = await _post_interaction(client, payload)

        assert response.status_code == 400
