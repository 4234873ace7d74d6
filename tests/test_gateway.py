"""
Unit tests for the Access Gateway: authorization, scope filtering and
usage counting.
"""

import threading

import pytest

from medshare.errors import AlreadyClaimedByOther, Denied, Expired, Forbidden, NotFound
from medshare.gateway import AccessGateway, filter_scopes
from medshare.models import AccessGrant
from medshare.store import GrantStore


# ── Helpers / Fakes ──────────────────────────────────────────────────

def claimed_token(lifecycle, permissions=None, ttl_hours=24, patient="P1", doctor="D1"):
    token = lifecycle.issue(patient, ttl_hours=ttl_hours, permissions=permissions).token
    lifecycle.claim(token, doctor)
    return token


class RevokingStore(GrantStore):
    """Revokes the grant right before the counter update, as a patient might."""
    def record_access(self, token, claimant_id, now):
        grant = self.get(token)
        self.revoke(token, grant.issuer_id, now)
        return super().record_access(token, claimant_id, now)


# ── Tests: filter_scopes ─────────────────────────────────────────────

def test_filter_scopes_intersects_and_drops_unknown(clock):
    grant = AccessGrant(token="ABCD2345", issuer_id="P1", expires_at=clock(),
                        permissions={"view_medications": True, "view_diagnosis": True})
    assert filter_scopes(grant, None) == {"view_medications", "view_diagnosis"}
    assert filter_scopes(grant, ["view_medications", "view_medical_history", "bogus"]) == {
        "view_medications",
    }
    assert filter_scopes(grant, []) == frozenset()


# ── Tests: access ────────────────────────────────────────────────────

def test_share_claim_view_expire_scenario(lifecycle, gateway, clock):
    token = claimed_token(lifecycle, {"view_medications": True, "view_medical_history": False})

    view = gateway.access(token, "D1", {"view_medications", "view_medical_history"})
    assert view.scopes == {"view_medications"}
    assert view.allows("view_medications")
    assert not view.allows("view_medical_history")

    with pytest.raises(AlreadyClaimedByOther):
        lifecycle.claim(token, "D2")

    clock.advance(hours=25)
    with pytest.raises(Expired):
        gateway.access(token, "D1", {"view_medications"})


def test_access_counts_each_authorized_read(lifecycle, gateway, store, clock):
    token = claimed_token(lifecycle)
    first = gateway.access(token, "D1")
    clock.advance(minutes=3)
    second = gateway.access(token.lower(), "D1", ["view_diagnosis"])

    assert first.access_count == 1
    assert second.access_count == 2
    assert second.scopes == {"view_diagnosis"}
    grant = store.get(token)
    assert grant.access_count == 2
    assert grant.last_accessed_at == clock()


def test_access_by_other_doctor_forbidden_and_uncounted(lifecycle, gateway, store):
    token = claimed_token(lifecycle)
    with pytest.raises(Forbidden):
        gateway.access(token, "D2")
    assert store.get(token).access_count == 0


def test_access_to_unclaimed_grant_forbidden(lifecycle, gateway):
    token = lifecycle.issue("P1").token
    with pytest.raises(Forbidden):
        gateway.access(token, "D1")


def test_access_unknown_or_malformed_token(gateway):
    with pytest.raises(NotFound):
        gateway.access("ZZZZ9999", "D1")
    with pytest.raises(NotFound):
        gateway.access("not a token", "D1")


def test_access_after_revoke_denied(lifecycle, gateway, store):
    token = claimed_token(lifecycle)
    lifecycle.revoke(token, "P1")
    with pytest.raises(Denied):
        gateway.access(token, "D1")
    assert store.get(token).access_count == 0


def test_expired_wins_over_stored_active_flag(lifecycle, gateway, store, clock):
    token = claimed_token(lifecycle, ttl_hours=2)
    clock.advance(hours=3)
    assert store.get(token).active is True
    with pytest.raises(Expired):
        gateway.access(token, "D1")
    assert store.get(token).active is False
    # Still expired, not merely denied, once the flag is off.
    with pytest.raises(Expired):
        gateway.access(token, "D1")


def test_revoke_between_check_and_count_is_denied(engine, lifecycle, clock):
    token = claimed_token(lifecycle)
    gateway = AccessGateway(RevokingStore(engine), clock=clock)
    with pytest.raises(Denied):
        gateway.access(token, "D1")
    assert GrantStore(engine).get(token).access_count == 0


def test_concurrent_reads_do_not_lose_increments(lifecycle, gateway, store):
    token = claimed_token(lifecycle)
    gateway.access(token, "D1")
    reads = 20
    barrier = threading.Barrier(reads)
    errors = []

    def read():
        barrier.wait()
        try:
            gateway.access(token, "D1", ["view_medications"])
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=read) for _ in range(reads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.get(token).access_count == 1 + reads
