import threading
import time

from app.core.errors import BackendUnavailable
from app.core.types import RoleProfile
from app.models.enums import ProfileRole

API = "/api/v1/auth"
PHONE = "+919876543210"


def login(client, gateway, phone="9876543210", device=None):
    r = client.post(f"{API}/otp/request", json={"phone": phone})
    assert r.status_code == 200, r.text
    code = gateway.last_code(r.json()["phone"])
    headers = {"X-Device-Id": device} if device else {}
    return client.post(f"{API}/otp/verify", json={"phone": phone, "code": code}, headers=headers)


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_request_otp_returns_canonical_phone_and_timers(client, gateway):
    r = client.post(f"{API}/otp/request", json={"phone": "098765 43210"})
    assert r.status_code == 200
    body = r.json()
    assert body == {"phone": PHONE, "expires_in": 300, "resend_available_in": 60}
    assert gateway.sent[0][0] == PHONE
    assert r.headers["X-Request-Id"]


def test_malformed_phone(client):
    r = client.post(f"{API}/otp/request", json={"phone": "12-34"})
    assert r.status_code == 422
    assert r.json()["code"] == "MALFORMED_PHONE"


def test_resend_cooldown_sets_retry_after(client, clock):
    client.post(f"{API}/otp/request", json={"phone": PHONE})
    clock.advance(15)

    r = client.post(f"{API}/otp/request", json={"phone": PHONE})
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "45"
    assert r.json()["code"] == "RESEND_COOLDOWN_ACTIVE"
    assert r.json()["seconds_remaining"] == 45


def test_status_counts_down(client, clock):
    client.post(f"{API}/otp/request", json={"phone": PHONE})
    clock.advance(50)

    body = client.get(f"{API}/otp/status", params={"phone": "9876543210"}).json()
    assert body["state"] == "ISSUED"
    assert body["resend_available_in"] == 10
    assert body["attempts_remaining"] == 5


def test_wrong_code_reports_attempts_left(client):
    client.post(f"{API}/otp/request", json={"phone": PHONE})
    r = client.post(f"{API}/otp/verify", json={"phone": PHONE, "code": "000000"})
    assert r.status_code == 401
    assert r.json()["code"] == "INVALID_CODE"
    assert r.json()["attempts_remaining"] == 4


def test_verify_without_request(client):
    r = client.post(f"{API}/otp/verify", json={"phone": PHONE, "code": "123456"})
    assert r.status_code == 400
    assert r.json()["code"] == "NO_ACTIVE_CHALLENGE"


def test_delivery_failure_is_502(client, gateway):
    gateway.fail_next = 2
    r = client.post(f"{API}/otp/request", json={"phone": PHONE})
    assert r.status_code == 502
    assert r.json()["code"] == "DELIVERY_FAILED"


def test_no_profiles_needs_onboarding(client, gateway):
    r = login(client, gateway)
    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "NEEDS_ONBOARDING"
    assert body["access_token"] is None
    assert body["session"] is None


def test_single_role_authenticated(client, gateway, profile_store, make_profile):
    profile_store.add("9876543210", [make_profile(ProfileRole.DEVELOPER, "Skyline Developers")])

    body = login(client, gateway).json()
    assert body["outcome"] == "AUTHENTICATED"
    assert body["session"]["selected_role"]["role"] == "developer"
    assert body["session"]["phone_verified"] is True


def test_suspended_account(client, gateway, profile_store, make_profile):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER)])
    profile_store.suspend(PHONE)

    body = login(client, gateway).json()
    assert body["outcome"] == "SUSPENDED"
    token = body["access_token"]

    d = client.get(f"{API}/authorize", headers=auth(token)).json()
    assert d["state"] == "SUSPENDED"

    r = client.post(f"{API}/session/role", json={"role": "broker"}, headers=auth(token))
    assert r.status_code == 403
    assert r.json()["code"] == "ACCOUNT_SUSPENDED"


def test_select_unowned_role_is_403(client, gateway, profile_store, make_profile):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER), make_profile(ProfileRole.ADMIN)])
    token = login(client, gateway).json()["access_token"]

    r = client.post(f"{API}/session/role", json={"role": "developer"}, headers=auth(token))
    assert r.status_code == 403
    assert r.json() == {
        "detail": "You are not registered as developer.",
        "code": "ROLE_NOT_OWNED",
        "retryable": True,
        "role": "developer",
        "request_id": r.headers["X-Request-Id"],
    }
    assert client.get(f"{API}/session", headers=auth(token)).json()["selected_role"] is None


def test_switch_role_keeps_session_and_clears_selection(client, gateway, profile_store, make_profile):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER), make_profile(ProfileRole.ADMIN)])
    token = login(client, gateway).json()["access_token"]
    client.post(f"{API}/session/role", json={"role": "admin"}, headers=auth(token))

    r = client.post(f"{API}/session/switch-role", headers=auth(token))
    assert r.status_code == 200
    assert [p["role"] for p in r.json()["roles"]] == ["admin", "broker"]
    assert r.json()["selected_role"] is None
    assert len(gateway.sent) == 1

    d = client.get(f"{API}/authorize", headers=auth(token)).json()
    assert d["state"] == "PENDING_ROLE_SELECTION"


def test_device_remembers_selected_role(client, gateway, profile_store, make_profile, clock):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER), make_profile(ProfileRole.ADMIN)])
    token = login(client, gateway, device="phone-a").json()["access_token"]
    client.post(f"{API}/session/role", json={"role": "broker"}, headers=auth(token))

    clock.advance(61)
    body = login(client, gateway, device="phone-a").json()
    assert body["outcome"] == "AUTHENTICATED"
    assert body["session"]["selected_role"]["role"] == "broker"


def test_sign_out_ends_session(client, gateway, profile_store, make_profile):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER)])
    token = login(client, gateway).json()["access_token"]

    assert client.post(f"{API}/sign-out", headers=auth(token)).status_code == 200

    r = client.get(f"{API}/session", headers=auth(token))
    assert r.status_code == 401
    d = client.get(f"{API}/authorize", headers=auth(token)).json()
    assert (d["state"], d["redirect_to"]) == ("UNAUTHENTICATED", "/auth")


def test_garbage_token_is_401(client):
    r = client.get(f"{API}/session", headers=auth("not-a-jwt"))
    assert r.status_code == 401


def test_authorize_without_token_redirects_to_login(client):
    d = client.get(f"{API}/authorize", params={"required_role": "broker"}).json()
    assert d == {"state": "UNAUTHENTICATED", "redirect_to": "/auth", "render": False}


def wait_for_guard(client, headers, *, leave_state="LOADING", tries=100):
    for _ in range(tries):
        d = client.get(f"{API}/authorize", headers=headers).json()
        if d["state"] != leave_state:
            return d
        time.sleep(0.02)
    raise AssertionError(f"guard stuck in {leave_state}")


def test_same_code_can_be_retried_after_backend_outage(client, codes, profile_store, make_profile, monkeypatch):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER)])
    lookup = profile_store.find_profiles_by_phone_variants
    failures = {"left": 2}

    def flaky(variants):
        if failures["left"]:
            failures["left"] -= 1
            raise BackendUnavailable()
        return lookup(variants)

    monkeypatch.setattr(profile_store, "find_profiles_by_phone_variants", flaky)
    codes.push("482913")
    client.post(f"{API}/otp/request", json={"phone": PHONE})

    r = client.post(f"{API}/otp/verify", json={"phone": PHONE, "code": "482913"})
    assert r.status_code == 503
    assert r.json()["code"] == "BACKEND_UNAVAILABLE"

    r = client.post(f"{API}/otp/verify", json={"phone": PHONE, "code": "482913"})
    assert r.status_code == 200
    assert r.json()["outcome"] == "AUTHENTICATED"


def test_switch_after_all_profiles_removed_goes_to_onboarding(client, gateway, profile_store, make_profile):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER), make_profile(ProfileRole.ADMIN)])
    token = login(client, gateway).json()["access_token"]
    profile_store.profiles.clear()

    r = client.post(f"{API}/session/switch-role", headers=auth(token))
    assert r.status_code == 200
    assert r.json() == {"roles": [], "selected_role": None, "outcome": "NEEDS_ONBOARDING"}

    assert client.get(f"{API}/session", headers=auth(token)).status_code == 401
    d = client.get(f"{API}/authorize", headers=auth(token)).json()
    assert d["state"] != "AUTHORIZED"


def test_navigation_refresh_shows_loading_and_drops_superseded_result(client, gateway, profile_store, make_profile, monkeypatch):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER), make_profile(ProfileRole.ADMIN)])
    token = login(client, gateway).json()["access_token"]
    headers = auth(token)
    client.post(f"{API}/session/role", json={"role": "broker"}, headers=headers)

    lookup = profile_store.find_profiles_by_phone_variants
    gate = threading.Event()
    calls = []

    def slow_first(variants):
        calls.append(variants)
        if len(calls) == 1:
            gate.wait(5)
            return [RoleProfile(ProfileRole.DEVELOPER, "stale", "Stale Row", stored_phone=PHONE)]
        return lookup(variants)

    monkeypatch.setattr(profile_store, "find_profiles_by_phone_variants", slow_first)
    try:
        d = client.get(f"{API}/authorize", params={"refresh": "true"}, headers=headers).json()
        assert d == {"state": "LOADING", "redirect_to": None, "render": False}
        for _ in range(100):
            if calls:
                break
            time.sleep(0.01)
        assert client.get(f"{API}/authorize", headers=headers).json()["state"] == "LOADING"

        # a second navigation supersedes the lookup still in flight
        client.get(f"{API}/authorize", params={"refresh": "true"}, headers=headers)
        d = wait_for_guard(client, headers)
        assert d["state"] == "AUTHORIZED"
    finally:
        gate.set()

    time.sleep(0.05)
    session = client.get(f"{API}/session", headers=headers).json()
    assert [p["role"] for p in session["roles"]] == ["admin", "broker"]
    assert session["selected_role"]["role"] == "broker"


def test_cancel_refresh_clears_loading(client, gateway, profile_store, make_profile, monkeypatch):
    profile_store.add(PHONE, [make_profile(ProfileRole.BROKER)])
    token = login(client, gateway).json()["access_token"]
    headers = auth(token)

    lookup = profile_store.find_profiles_by_phone_variants
    gate = threading.Event()

    def blocked(variants):
        gate.wait(5)
        return lookup(variants)

    monkeypatch.setattr(profile_store, "find_profiles_by_phone_variants", blocked)
    try:
        d = client.get(f"{API}/authorize", params={"refresh": "true"}, headers=headers).json()
        assert d["state"] == "LOADING"

        assert client.post(f"{API}/session/refresh/cancel", headers=headers).status_code == 200
        assert client.get(f"{API}/authorize", headers=headers).json()["state"] == "AUTHORIZED"
    finally:
        gate.set()
