"""
Tests for auto-matching rules, scoring and credit charging.
"""
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from owldoor import auth
from owldoor.main import app
from owldoor.services import matching, rate_limit
from owldoor.services.matching import (
    is_matchable_pro,
    types_compatible,
    exceeds_spend_limit,
    has_geographic_match,
    calculate_direct_match_score,
    plan_matches,
    charge_cost,
    auto_charge_match,
    run_auto_match,
    InsufficientCredits,
    MatchNotFound,
)

BOSTON = {"latitude": 42.3576, "longitude": -71.0684}
CAMBRIDGE = {"latitude": 42.3647, "longitude": -71.1042}
DALLAS = {"latitude": 32.7904, "longitude": -96.8044}


def pro(**fields):
    base = {"id": "pro-1", "pro_type": "real_estate_agent", "motivation": 8, "wants": None,
            "needs": None, "transactions": 10, "total_volume_12mo": 5_000_000,
            "qualification_score": 70, "zip_codes": None, "cities": None, "states": None,
            "latitude": None, "longitude": None}
    base.update(fields)
    return base


def client(**fields):
    base = {"id": "client-1", "client_type": "real_estate", "credits_balance": 1000,
            "monthly_spend_limit": None, "current_month_spend": None, "zip_codes": None,
            "cities": None, "states": None, "latitude": None, "longitude": None}
    base.update(fields)
    return base


class TestEligibility:
    def test_motivation_above_five(self):
        assert is_matchable_pro(pro(motivation=6))
        assert not is_matchable_pro(pro(motivation=5))

    def test_wants_and_needs(self):
        assert is_matchable_pro(pro(motivation=None, wants=["leads"], needs="Better split"))
        assert not is_matchable_pro(pro(motivation=None, wants=["leads"], needs="   "))
        assert not is_matchable_pro(pro(motivation=None, wants=[], needs="Better split"))

    def test_type_compatibility(self):
        assert types_compatible("real_estate_agent", "real_estate")
        assert types_compatible("mortgage_officer", "mortgage")
        assert not types_compatible("real_estate_agent", "mortgage")
        assert not types_compatible(None, "real_estate")

    def test_spend_limit(self):
        assert exceeds_spend_limit(client(monthly_spend_limit=1000, current_month_spend=800))
        assert not exceeds_spend_limit(client(monthly_spend_limit=1000, current_month_spend=700))
        assert not exceeds_spend_limit(client(monthly_spend_limit=None, current_month_spend=5000))

    def test_geography_by_distance(self):
        assert has_geographic_match(pro(**BOSTON), client(**CAMBRIDGE))
        assert not has_geographic_match(pro(**BOSTON), client(**DALLAS))

    def test_geography_falls_back_to_arrays(self):
        assert has_geographic_match(pro(**BOSTON, states=["TX"]), client(**DALLAS, states=["TX"]))
        assert has_geographic_match(pro(cities=["Quincy"]), client(cities=["Quincy", "Milton"]))
        assert not has_geographic_match(pro(cities=["Quincy"]), client(cities=["Austin"]))


class TestDirectMatchScore:
    def test_agent_nearby(self):
        score = calculate_direct_match_score(pro(**BOSTON), client(**CAMBRIDGE))
        assert score["breakdown"]["geographic"] == 50
        # transactions 20 + volume 10 + qualification 7
        assert score["breakdown"]["performance"] == pytest.approx(37)
        assert score["score"] == pytest.approx(87)

    def test_array_overlap_scoring(self):
        score = calculate_direct_match_score(
            pro(zip_codes=["02108", "02109"], cities=["Boston"], states=["MA"]),
            client(zip_codes=["02108", "02109", "02110"], cities=["Boston"], states=["MA"]),
        )
        assert score["breakdown"]["geographic"] == 20

    def test_mortgage_officer_performance(self):
        officer = pro(pro_type="mortgage_officer", annual_loan_volume=40_000_000,
                      on_time_close_rate=90, **BOSTON)
        score = calculate_direct_match_score(officer, client(client_type="mortgage", **CAMBRIDGE))
        assert score["breakdown"]["performance"] == pytest.approx(48)

    def test_total_is_capped(self):
        star = pro(transactions=100, total_volume_12mo=50_000_000, qualification_score=100, **BOSTON)
        assert calculate_direct_match_score(star, client(**CAMBRIDGE))["score"] == 100

    def test_numeric_columns_as_decimal(self):
        agent = pro(total_volume_12mo=Decimal("5000000.00"), transactions=10,
                    qualification_score=Decimal("70"), **BOSTON)
        score = calculate_direct_match_score(agent, client(**CAMBRIDGE))
        assert score["breakdown"]["performance"] == pytest.approx(37)
        json.dumps(score["breakdown"])

        officer = pro(pro_type="mortgage_officer", annual_loan_volume=Decimal("40000000"),
                      on_time_close_rate=Decimal("90.0"), **BOSTON)
        score = calculate_direct_match_score(officer, client(client_type="mortgage", **CAMBRIDGE))
        assert score["breakdown"]["performance"] == pytest.approx(48)


class TestPlanMatches:
    def test_stats_and_matches(self):
        pros = [pro(**BOSTON), pro(id="pro-2", motivation=2)]
        clients = [
            client(**CAMBRIDGE),
            client(id="client-2", client_type="mortgage", **CAMBRIDGE),
            client(id="client-3", **DALLAS),
            client(id="client-4", monthly_spend_limit=500, current_month_spend=400, **CAMBRIDGE),
        ]
        matches, stats = plan_matches(pros, clients, set())
        assert [(m["pro_id"], m["client_id"]) for m in matches] == [("pro-1", "client-1")]
        assert stats == {
            "pros_processed": 2,
            "clients_checked": 4,
            "type_mismatches": 1,
            "no_overlap": 1,
            "criteria_failed": 1,
            "spend_limit_reached": 1,
            "matches_created": 1,
        }

    def test_existing_pairs_skipped(self):
        matches, stats = plan_matches([pro(**BOSTON)], [client(**CAMBRIDGE)], {("pro-1", "client-1")})
        assert matches == []
        assert stats["matches_created"] == 0


MATCH_ROW = {"id": "m-1", "client_id": "client-1", "cost": None, "pricing_tier": "qualified",
             "purchased": False, "credits_balance": 1000, "credits_used": 100,
             "current_month_spend": 200, "pro_name": "Jane Doe"}


class TestAutoCharge:
    def test_charge_cost(self):
        assert charge_cost({"cost": 120, "pricing_tier": "premium"}) == 120
        assert charge_cost({"cost": None, "pricing_tier": "premium"}) == 500
        assert charge_cost({"cost": None, "pricing_tier": "qualified"}) == 300
        assert charge_cost({"cost": None, "pricing_tier": None}) == 50

    def test_deducts_credits(self, fake_db):
        cur = fake_db(matching, [[MATCH_ROW]])
        result = auto_charge_match("m-1")
        assert result["amount_charged"] == 300
        assert result["new_balance"] == 700
        _, client_params = cur.statements("UPDATE CLIENTS")[0]
        assert client_params == (700, 400, 500, "client-1")
        _, match_params = cur.statements("UPDATE MATCHES")[0]
        assert match_params == (300, "m-1")
        log_sql, log_params = cur.statements("INSERT INTO PAYMENT_ACTIVITY_LOG")[0]
        assert "match_auto_charge_credits" in log_sql
        assert log_params[:2] == ("client-1", 300)

    def test_insufficient_credits(self, fake_db):
        cur = fake_db(matching, [[dict(MATCH_ROW, credits_balance=100)]])
        with pytest.raises(InsufficientCredits) as exc:
            auto_charge_match("m-1")
        assert exc.value.required == 300
        assert exc.value.available == 100
        assert not cur.statements("UPDATE")

    def test_already_purchased(self, fake_db):
        fake_db(matching, [[dict(MATCH_ROW, purchased=True)]])
        assert auto_charge_match("m-1") == {"success": True, "already_purchased": True}

    def test_decimal_balances(self, fake_db):
        row = dict(MATCH_ROW, cost=Decimal("250.00"), credits_balance=Decimal("1000.00"),
                   credits_used=Decimal("100"), current_month_spend=Decimal("200"))
        cur = fake_db(matching, [[row]])
        result = auto_charge_match("m-1")
        assert result["new_balance"] == 750
        _, client_params = cur.statements("UPDATE CLIENTS")[0]
        assert client_params == (750, 350, 450, "client-1")

    def test_unknown_match(self, fake_db):
        fake_db(matching, [[]])
        with pytest.raises(MatchNotFound):
            auto_charge_match("nope")


class TestRunAutoMatch:
    def test_inserts_charges_and_advances_pros(self, fake_db, monkeypatch):
        charged = []

        def fake_charge(match_id):
            charged.append(match_id)
            if match_id == "m-2":
                raise InsufficientCredits(300, 10)
            return {"success": True}

        monkeypatch.setattr(matching, "auto_charge_match", fake_charge)
        pros = [pro(**BOSTON)]
        clients = [client(**CAMBRIDGE), client(id="client-2", **BOSTON)]
        cur = fake_db(matching, [
            pros,
            clients,
            [],
            [{"id": "m-1", "pro_id": "pro-1", "client_id": "client-1"}],
            [{"id": "m-2", "pro_id": "pro-1", "client_id": "client-2"}],
        ])

        result = run_auto_match()
        assert result["stats"]["matches_created"] == 2
        assert charged == ["m-1", "m-2"]
        insert_sql, insert_params = cur.statements("INSERT INTO MATCHES")[0]
        assert "'lead_purchase'" in insert_sql
        assert insert_params[:2] == ("pro-1", "client-1")
        _, update_params = cur.statements("UPDATE PROS")[0]
        assert update_params == (["pro-1"],)

    def test_no_pros(self, fake_db):
        fake_db(matching, [[], [client()]])
        assert run_auto_match()["message"] == "No match-ready pros found"

    def test_no_clients(self, fake_db):
        fake_db(matching, [[pro()], []])
        assert run_auto_match()["message"] == "No eligible clients found"


INTERNAL_SECRET = "internal-test-secret"


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setenv("INTERNAL_API_SECRET", INTERNAL_SECRET)
    monkeypatch.setattr(rate_limit, "check_rate_limit", lambda *a: True)
    return TestClient(app, headers={"x-internal-secret": INTERNAL_SECRET})


class TestMatchingEndpoints:
    def test_auto_match_requires_internal_secret(self, api, monkeypatch):
        ran = []
        monkeypatch.setattr(matching, "run_auto_match", lambda: ran.append(True))
        assert TestClient(app).post("/api/matching/auto-match").status_code == 401
        resp = api.post("/api/matching/auto-match", headers={"x-internal-secret": "wrong"})
        assert resp.status_code == 401
        assert ran == []

    def test_charge_requires_internal_secret(self, api, monkeypatch):
        charged = []
        monkeypatch.setattr(matching, "auto_charge_match", charged.append)
        assert TestClient(app).post("/api/matching/charge/m-1").status_code == 401
        assert charged == []

    def test_internal_secret_not_configured(self, api, monkeypatch):
        monkeypatch.delenv("INTERNAL_API_SECRET")
        monkeypatch.setattr(auth, "INTERNAL_API_SECRET", "")
        resp = api.post("/api/matching/charge/m-1")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Internal access not configured"

    def test_auto_match(self, api, monkeypatch):
        monkeypatch.setattr(matching, "run_auto_match", lambda: {"success": True, "stats": {}})
        assert api.post("/api/matching/auto-match").json()["success"] is True

    def test_auto_match_rate_limited(self, api, monkeypatch):
        monkeypatch.setattr(rate_limit, "check_rate_limit", lambda *a: False)
        assert api.post("/api/matching/auto-match").status_code == 429

    def test_limiter_error_allows_auto_match(self, api, monkeypatch):
        def broken(*args):
            raise RuntimeError("db down")

        monkeypatch.setattr(rate_limit, "check_rate_limit", broken)
        monkeypatch.setattr(matching, "run_auto_match", lambda: {"success": True})
        assert api.post("/api/matching/auto-match").status_code == 200

    def test_charge_insufficient_credits(self, api, monkeypatch):
        def short(match_id):
            raise InsufficientCredits(300, 10)

        monkeypatch.setattr(matching, "auto_charge_match", short)
        resp = api.post("/api/matching/charge/m-1")
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "insufficient_credits"

    def test_charge_unknown_match(self, api, monkeypatch):
        def missing(match_id):
            raise MatchNotFound(match_id)

        monkeypatch.setattr(matching, "auto_charge_match", missing)
        assert api.post("/api/matching/charge/nope").status_code == 404
