"""Retention sweep: abandoned intents time out, stale unfinished ones are deleted."""
from datetime import datetime, timedelta, timezone

from provisioning.models import AuditLog, SignupIntent
from provisioning.services.retention import expire_abandoned_intents, purge_stale_intents, run_retention
from provisioning.services.state_machine import IntentStatus


def _now_plus(**delta):
    return datetime.now(timezone.utc) + timedelta(**delta)


def _status(db, intent_id):
    db.expire_all()
    intent = db.query(SignupIntent).filter(SignupIntent.id == intent_id).first()
    return intent.status if intent else None


def test_recent_intents_are_left_alone(create_intent, db):
    iid = create_intent()["intent_id"]
    assert expire_abandoned_intents(db, _now_plus(hours=1)) == []
    assert _status(db, iid) == IntentStatus.CREATED


def test_abandoned_intents_time_out(client, create_intent, db):
    created = create_intent()["intent_id"]
    redirected = create_intent(email="b@acme.com")["intent_id"]
    client.post("/signup/checkout", json={"intent_id": redirected})

    expired = expire_abandoned_intents(db, _now_plus(hours=25))
    assert sorted(expired) == sorted([created, redirected])
    assert _status(db, created) == IntentStatus.TIMEOUT
    assert _status(db, redirected) == IntentStatus.TIMEOUT


def test_paid_ready_is_never_expired(client, create_intent, db):
    iid = create_intent()["intent_id"]
    client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "pm_card_visa"})
    assert run_retention(db, _now_plus(days=30)).expired == []
    assert _status(db, iid) == IntentStatus.PAID_READY


def test_dry_run_changes_nothing(create_intent, db):
    iid = create_intent()["intent_id"]
    assert expire_abandoned_intents(db, _now_plus(hours=25), dry_run=True) == [iid]
    assert _status(db, iid) == IntentStatus.CREATED


def test_stale_timeouts_are_purged_with_audit_trail(create_intent, db):
    iid = create_intent()["intent_id"]
    expire_abandoned_intents(db, _now_plus(hours=25))
    assert purge_stale_intents(db, _now_plus(days=1)) == []
    assert purge_stale_intents(db, _now_plus(days=8)) == [iid]
    assert _status(db, iid) is None
    assert db.query(AuditLog).filter(AuditLog.intent_id == iid, AuditLog.category == "retention").count() == 1


def test_finalized_intents_survive(client, create_intent, db):
    iid = create_intent()["intent_id"]
    client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "pm_card_visa"})
    client.post("/signup/finalize", json={"intent_id": iid, "password": "correct-horse"})
    report = run_retention(db, _now_plus(days=30))
    assert iid not in report.expired
    assert iid not in report.purged
    assert _status(db, iid) == IntentStatus.FINALIZED
