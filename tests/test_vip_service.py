from datetime import datetime, timedelta

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError

from foodai.infra.models import UserVip, User, db
from foodai.infra.repository import get_live_vip, insert_vip
from foodai.services import vip_service
from foodai.services.vip_service import grant_vip, revoke_vip_if_expired, get_vip_status

NOW = datetime(2024, 3, 1, 8, 0, 0)


def _vip(user_id="u1"):
    return UserVip.query.filter_by(user_id=user_id, is_deleted=False).first()


def _user(user_id="u1"):
    return User.query.filter_by(id=user_id).first()


def test_first_grant_creates_record_and_profile_mirror(app):
    expire = grant_vip("u1", "monthly", 30, now=NOW)
    assert expire == NOW + relativedelta(months=1)
    vip = _vip()
    assert vip.is_vip is True
    assert vip.start_time == NOW
    assert vip.expire_time == expire
    assert _user().is_vip is True
    assert _user().vip_expire_time == expire


def test_regrant_with_same_plan_and_time_is_idempotent(app):
    first = grant_vip("u1", "monthly", 30, now=NOW)
    second = grant_vip("u1", "monthly", 30, now=NOW)
    assert first == second
    assert UserVip.query.filter_by(user_id="u1").count() == 1


def test_later_grant_extends_expiry(app):
    grant_vip("u1", "monthly", 30, now=NOW)
    later = NOW + timedelta(days=10)
    expire = grant_vip("u1", "monthly", 30, now=later)
    assert expire == later + relativedelta(months=1)
    assert _vip().expire_time == expire
    assert _user().vip_expire_time == expire


def test_shorter_grant_never_shortens_existing(app):
    yearly = grant_vip("u1", "yearly", 365, now=NOW)
    expire = grant_vip("u1", "monthly", 30, now=NOW + timedelta(days=1))
    assert expire == yearly
    vip = _vip()
    assert vip.plan_type == "yearly"
    assert vip.expire_time == yearly
    # 冗余字段与会员记录保持一致
    assert _user().vip_expire_time == yearly


def test_unknown_plan_uses_base_duration(app):
    expire = grant_vip("u1", "quarterly", 90, now=NOW)
    assert expire == NOW + timedelta(days=90)


def test_revoke_keeps_unexpired_membership(app):
    grant_vip("u1", "monthly", 30, now=NOW)
    assert revoke_vip_if_expired("u1", now=NOW + timedelta(days=5)) is False
    assert _vip().is_vip is True
    assert _user().is_vip is True


def test_revoke_turns_off_expired_membership(app):
    expire = grant_vip("u1", "monthly", 30, now=NOW)
    assert revoke_vip_if_expired("u1", now=expire) is True
    assert _vip().is_vip is False
    assert _user().is_vip is False
    assert _user().vip_expire_time == expire


def test_revoke_without_record_is_noop(app):
    assert revoke_vip_if_expired("nobody", now=NOW) is False
    assert _user("nobody") is None


def test_grant_after_expiry_reactivates(app):
    expire = grant_vip("u1", "monthly", 30, now=NOW)
    revoke_vip_if_expired("u1", now=expire)
    grant_vip("u1", "monthly", 30, now=expire + timedelta(days=1))
    assert _vip().is_vip is True
    assert _user().is_vip is True


def test_vip_status(app):
    assert get_vip_status("u1", now=NOW)["status"] == "not_vip"
    grant_vip("u1", "monthly", 30, now=NOW)
    status = get_vip_status("u1", now=NOW + timedelta(days=1))
    assert status["status"] == "active"
    assert status["isVip"] is True
    assert status["daysRemaining"] == 30
    assert get_vip_status("u1", now=NOW + timedelta(days=40))["status"] == "expired"


def test_concurrent_first_grants_share_one_record(app, monkeypatch):
    grant_vip("u1", "monthly", 30, now=NOW)

    # 第二次发放在第一次插入之前读到了"没有记录"
    calls = []

    def stale_lookup(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            return None
        return get_live_vip(user_id)

    monkeypatch.setattr(vip_service, "get_live_vip", stale_lookup)
    expire = grant_vip("u1", "yearly", 365, now=NOW)

    assert UserVip.query.filter_by(user_id="u1").count() == 1
    assert expire == NOW + relativedelta(years=1)
    assert _vip().plan_type == "yearly"
    assert _vip().expire_time == expire
    assert _user().vip_expire_time == expire


def test_second_vip_row_for_same_user_is_rejected(app):
    insert_vip("u1", "monthly", NOW + relativedelta(months=1), NOW)
    with pytest.raises(IntegrityError):
        insert_vip("u1", "yearly", NOW + relativedelta(years=1), NOW)
    db.session.rollback()
    assert UserVip.query.filter_by(user_id="u1").count() == 1
