from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import NOW, FailingPublisher, make_city, make_lock
from gatekeeper.core.exceptions import DatabaseError, LockNotFoundError, RateLimitExceededError
from gatekeeper.models.access import AccessLog
from gatekeeper.models.audit import AuditEvent
from gatekeeper.models.credential import RFIDKey
from gatekeeper.schemas.access import AccessResult, TapEvent
from gatekeeper.services.access_service import AccessService, grant_in_effect
from gatekeeper.services.audit_service import AuditService


def _service(publisher):
    return AccessService(publisher=publisher, auditor=AuditService(dedup_window_seconds=0), clock=lambda: NOW)


def _tap(lock, card_id="CARD-1", **fields):
    return TapEvent(card_id=card_id, lock_id=lock.id, **fields)


def test_valid_tap_is_granted_and_fully_attributed(db, world, publisher):
    record = _service(publisher).decide(
        db, _tap(world.lock, device_info={"fw": "1.2"}, metadata={"door": "north"})
    )

    assert record.result == AccessResult.GRANTED.value
    assert record.user_id == world.holder.id
    assert record.rfid_key_id == world.key.id
    assert record.lock_id == world.lock.id
    assert record.city_id == world.city.id
    assert record.timestamp == NOW
    assert record.to_dict()["device_info"] == {"fw": "1.2"}
    assert record.to_dict()["metadata"] == {"door": "north"}
    assert db.query(AccessLog).count() == 1

    db.refresh(world.lock)
    assert world.lock.last_seen == NOW


def test_granted_tap_is_audited_and_published(db, world, publisher):
    record = _service(publisher).decide(db, _tap(world.lock))

    events = db.query(AuditEvent).all()
    assert [(e.action, e.entity_type, e.entity_id, e.user_id) for e in events] == [
        ("ACCESS_ATTEMPT", "AccessLog", record.id, world.holder.id)
    ]
    assert [(city, event) for city, event, _ in publisher.events] == [
        (world.city.id, "access.created"),
        (world.city.id, "kpi:update"),
    ]
    assert publisher.events[0][2]["id"] == record.id


def test_unknown_lock_raises_and_persists_nothing(db, world, publisher):
    with pytest.raises(LockNotFoundError) as excinfo:
        _service(publisher).decide(db, TapEvent(card_id="CARD-1", lock_id="missing-lock"))

    assert excinfo.value.status_code == 404
    assert excinfo.value.details == {"lock_id": "missing-lock"}
    assert db.query(AccessLog).count() == 0
    assert publisher.events == []


def test_rejected_admission_records_nothing(db, world, publisher):
    seen = []

    def refuse(lock):
        seen.append(lock.id)
        raise RateLimitExceededError()

    with pytest.raises(RateLimitExceededError):
        _service(publisher).decide(db, _tap(world.lock), admit=refuse)

    assert seen == [world.lock.id]
    assert db.query(AccessLog).count() == 0
    assert publisher.events == []


def test_inactive_lock_hides_whether_the_card_is_valid(db, world, publisher):
    world.lock.is_active = False
    world.lock.is_online = False
    db.commit()
    service = _service(publisher)

    valid = service.decide(db, _tap(world.lock))
    unknown = service.decide(db, _tap(world.lock, card_id="NOBODY"))

    assert valid.result == AccessResult.DENIED_INACTIVE_LOCK.value
    assert unknown.result == AccessResult.DENIED_INACTIVE_LOCK.value
    assert unknown.user_id is None and unknown.rfid_key_id is None


def test_offline_lock_is_reported_as_device_error(db, world, publisher):
    world.lock.is_online = False
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.ERROR_DEVICE_OFFLINE.value
    assert record.user_id == world.holder.id


def test_unknown_card_is_invalid(db, world, publisher):
    record = _service(publisher).decide(db, _tap(world.lock, card_id="  NOBODY  "))

    assert record.result == AccessResult.DENIED_INVALID_CARD.value
    assert record.user_id is None
    assert record.rfid_key_id is None


def test_deactivated_card_is_invalid(db, world, publisher):
    world.key.is_active = False
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.DENIED_INVALID_CARD.value
    assert record.rfid_key_id == world.key.id


def test_expired_card_is_denied(db, world, publisher):
    world.key.expires_at = NOW - timedelta(seconds=1)
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.DENIED_EXPIRED_CARD.value


def test_card_expiring_exactly_now_still_works(db, world, publisher):
    world.key.expires_at = NOW
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.GRANTED.value


def test_inactive_holder_is_denied(db, world, publisher):
    world.holder.is_active = False
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.DENIED_INACTIVE_USER.value


def test_missing_grant_is_no_permission(db, world, publisher):
    db.delete(world.grant)
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.DENIED_NO_PERMISSION.value


def test_disabled_grant_is_no_permission(db, world, publisher):
    world.grant.can_access = False
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == AccessResult.DENIED_NO_PERMISSION.value


def test_grant_for_another_lock_does_not_open_this_one(db, world, publisher):
    other = make_lock(db, world.address, name="Back door")

    record = _service(publisher).decide(db, _tap(other))

    assert record.result == AccessResult.DENIED_NO_PERMISSION.value


@pytest.mark.parametrize(
    "valid_from, valid_to, expected",
    [
        (NOW + timedelta(minutes=1), None, AccessResult.DENIED_TIME_RESTRICTION),
        (NOW - timedelta(days=1), NOW, AccessResult.DENIED_TIME_RESTRICTION),
        (NOW - timedelta(days=1), NOW - timedelta(hours=1), AccessResult.DENIED_TIME_RESTRICTION),
        (NOW - timedelta(days=1), NOW + timedelta(seconds=1), AccessResult.GRANTED),
        (NOW, None, AccessResult.GRANTED),
    ],
)
def test_grant_window(db, world, publisher, valid_from, valid_to, expected):
    world.grant.valid_from = valid_from
    world.grant.valid_to = valid_to
    db.commit()

    record = _service(publisher).decide(db, _tap(world.lock))

    assert record.result == expected.value


def test_denials_are_not_audited_and_leave_last_seen_alone(db, world, publisher):
    world.holder.is_active = False
    db.commit()

    _service(publisher).decide(db, _tap(world.lock))

    assert db.query(AuditEvent).count() == 0
    db.refresh(world.lock)
    assert world.lock.last_seen is None
    # Denials are still published to the city
    assert [event for _, event, _ in publisher.events] == ["access.created", "kpi:update"]


def test_publisher_failure_does_not_fail_the_decision(db, world):
    record = _service(FailingPublisher()).decide(db, _tap(world.lock))

    assert record.result == AccessResult.GRANTED.value
    assert db.query(AccessLog).count() == 1


def test_each_tap_writes_exactly_one_record(db, world, publisher):
    service = _service(publisher)
    for card_id in ("CARD-1", "NOBODY", "CARD-1"):
        service.decide(db, _tap(world.lock, card_id=card_id))

    assert db.query(AccessLog).count() == 3


def test_grant_in_effect_handles_open_windows(world):
    world.grant.valid_from = NOW - timedelta(hours=1)
    world.grant.valid_to = None
    assert grant_in_effect(world.grant, NOW)
    assert not grant_in_effect(world.grant, NOW - timedelta(hours=2))


def test_access_logs_are_filtered_by_city_and_paged(db, world, publisher):
    other_city, other_address = make_city(db, "Shelbyville")
    other_lock = make_lock(db, other_address, name="Depot")
    service = _service(publisher)

    for _ in range(3):
        service.decide(db, _tap(world.lock))
    service.decide(db, _tap(other_lock, card_id="NOBODY"))

    items, total = AccessService.list_access_logs(db, city_id=world.city.id, limit=2)
    assert total == 3
    assert len(items) == 2
    assert {item.city_id for item in items} == {world.city.id}

    items, total = AccessService.list_access_logs(db, city_id=None)
    assert total == 4

    items, total = AccessService.list_access_logs(
        db, city_id=other_city.id, result=AccessResult.DENIED_INVALID_CARD.value
    )
    assert total == 1
    assert items[0].lock_id == other_lock.id


def test_keys_survive_decisions_untouched(db, world, publisher):
    _service(publisher).decide(db, _tap(world.lock))

    key = db.query(RFIDKey).filter(RFIDKey.card_id == "CARD-1").one()
    assert key.is_active is True


def test_store_failure_raises_and_publishes_nothing(db, world, publisher, monkeypatch):
    def broken_commit():
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(DatabaseError):
        _service(publisher).decide(db, _tap(world.lock))

    assert publisher.events == []
