"""
Tests for the TCPA SMS consent log.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from owldoor.main import app
from owldoor.services import sms_consent
from owldoor.services.sms_consent import evaluate_consent, ConsentValidationError

CONSENTED = datetime(2026, 1, 5, 15, 30, tzinfo=timezone.utc)

RECORD = {"id": "c-1", "phone_number": "+16175550100", "consent_given": True,
          "consent_timestamp": CONSENTED, "consent_method": "website",
          "double_opt_in_confirmed": True, "opt_out_timestamp": None}


class TestEvaluateConsent:
    def test_no_record(self):
        decision = evaluate_consent(None)
        assert decision["can_send"] is False
        assert decision["reason"] == "no_consent_record"

    def test_opted_out(self):
        opted_out = dict(RECORD, opt_out_timestamp=CONSENTED)
        decision = evaluate_consent(opted_out)
        assert decision["reason"] == "opted_out"
        assert decision["opt_out_date"] == CONSENTED

    def test_consent_not_given(self):
        assert evaluate_consent(dict(RECORD, consent_given=False))["reason"] == "consent_not_given"

    def test_can_send(self):
        assert evaluate_consent(RECORD) == {
            "can_send": True,
            "consent_date": CONSENTED,
            "consent_method": "website",
            "double_opt_in_confirmed": True,
        }


class TestConsentLog:
    def test_log_stores_e164(self, fake_db):
        cur = fake_db(sms_consent, [[RECORD]])
        row = sms_consent.log_consent("(617) 555-0100", True, "website",
                                      "I agree to receive texts from OwlDoor.")
        assert row["id"] == "c-1"
        _, params = cur.executed[0]
        assert params[0] == "+16175550100"
        assert params[-1] is False

    def test_short_phone_rejected(self, fake_db):
        fake_db(sms_consent, [])
        with pytest.raises(ConsentValidationError):
            sms_consent.check_consent("555-0100 ext")

    def test_check_uses_latest_record(self, fake_db):
        cur = fake_db(sms_consent, [[RECORD]])
        assert sms_consent.check_consent("+1 617 555 0100")["can_send"] is True
        sql, params = cur.executed[0]
        assert "ORDER BY created_at DESC" in sql
        assert params == ("+16175550100",)


class TestOptOut:
    def test_marks_latest_record(self, fake_db):
        cur = fake_db(sms_consent, [[RECORD]])
        assert sms_consent.log_opt_out("6175550100") == "updated"
        _, params = cur.statements("UPDATE SMS_CONSENT_LOG")[0]
        assert params == ("c-1",)

    def test_inserts_when_no_consent_exists(self, fake_db):
        cur = fake_db(sms_consent, [[]])
        assert sms_consent.log_opt_out("6175550100", "email") == "created"
        _, params = cur.statements("INSERT INTO SMS_CONSENT_LOG")[0]
        assert params == ("+16175550100", "email", "User opted out via email")

    def test_already_opted_out_is_noop(self, fake_db):
        cur = fake_db(sms_consent, [[dict(RECORD, opt_out_timestamp=CONSENTED)]])
        assert sms_consent.log_opt_out("6175550100") == "already_opted_out"
        assert len(cur.executed) == 1


@pytest.fixture
def client():
    return TestClient(app)


class TestConsentEndpoints:
    def test_log(self, client, monkeypatch):
        calls = []

        def fake_log(**kwargs):
            calls.append(kwargs)
            return {"id": "c-9"}

        monkeypatch.setattr(sms_consent, "log_consent", fake_log)
        resp = client.post("/api/sms-consent", json={
            "phone_number": " 617-555-0100 ",
            "consent_given": True,
            "consent_method": "website",
            "consent_text": "I agree to receive texts from OwlDoor.",
        })
        assert resp.status_code == 200
        assert resp.json()["id"] == "c-9"
        assert calls[0]["phone_number"] == "617-555-0100"
        assert calls[0]["double_opt_in_confirmed"] is False

    def test_log_rejects_unknown_method(self, client):
        resp = client.post("/api/sms-consent", json={
            "phone_number": "6175550100",
            "consent_given": True,
            "consent_method": "carrier_pigeon",
            "consent_text": "I agree to receive texts from OwlDoor.",
        })
        assert resp.status_code == 400

    def test_log_rejects_short_text(self, client):
        resp = client.post("/api/sms-consent", json={
            "phone_number": "6175550100",
            "consent_given": True,
            "consent_method": "sms",
            "consent_text": "ok",
        })
        assert resp.status_code == 400

    def test_check(self, client, monkeypatch):
        monkeypatch.setattr(sms_consent, "check_consent",
                            lambda phone: {"can_send": False, "reason": "no_consent_record"})
        resp = client.post("/api/sms-consent/check", json={"phone_number": "6175550100"})
        assert resp.json()["reason"] == "no_consent_record"

    def test_check_short_phone(self, client):
        assert client.post("/api/sms-consent/check", json={"phone_number": "555"}).status_code == 400

    def test_opt_out_defaults_to_sms(self, client, monkeypatch):
        calls = []
        monkeypatch.setattr(sms_consent, "log_opt_out",
                            lambda phone, method: calls.append((phone, method)) or "updated")
        resp = client.post("/api/sms-consent/opt-out", json={"phone_number": "6175550100"})
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "updated"
        assert calls == [("6175550100", "sms")]

    def test_service_validation_error_is_400(self, client, monkeypatch):
        def bad(phone):
            raise ConsentValidationError("phone_number must contain at least 10 digits")

        monkeypatch.setattr(sms_consent, "check_consent", bad)
        resp = client.post("/api/sms-consent/check", json={"phone_number": "phone-number-x"})
        assert resp.status_code == 400
