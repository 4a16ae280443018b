from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

from foodai.domain.requests import CreateOrderRequest, QueryOrderRequest, ListOrdersRequest, CancelOrderRequest
from foodai.infra.models import Order, db
from foodai.services import order_service
from foodai.services.order_service import (
    create_order_service, get_order_service, list_orders_service, cancel_order_service,
)
from foodai.services.payment_service import handle_payment_success

from .conftest import pay_notify_payload


def _create(user_id="u1", plan_type="monthly", amount=990, description="月付会员"):
    return create_order_service(CreateOrderRequest(
        user_id=user_id, plan_type=plan_type, amount=amount, description=description))


def test_create_order_persists_pending_order(app):
    res = _create()
    order = res["order"]
    assert res["duplicate"] is False
    assert order.order_no.startswith("FOODAI")
    assert order.pay_status == "pending"
    assert order.status == "created"
    assert order.plan_name == "月付会员"
    assert order.duration == 30
    assert order.features == ["无限次AI识别", "基础营养分析"]
    assert abs(order.expire_time - (datetime.now() + timedelta(days=30))) < timedelta(minutes=1)
    assert order.pay_data["package"].startswith("prepay_id=")
    assert order.pay_data["signType"] == "MD5"


def test_second_create_within_window_returns_same_order(app):
    first = _create()["order"]
    second = _create()
    assert second["duplicate"] is True
    assert second["order"].order_no == first.order_no
    assert Order.query.count() == 1


def test_create_after_window_makes_new_order(app):
    first = _create()["order"]
    first.create_time = datetime.now() - timedelta(minutes=6)
    db.session.commit()
    second = _create()
    assert second["duplicate"] is False
    assert second["order"].order_no != first.order_no


def test_pending_orders_of_other_users_are_ignored(app):
    first = _create(user_id="u1")["order"]
    other = _create(user_id="u2")["order"]
    assert other.order_no != first.order_no


def test_duplicate_lookup_failure_does_not_block_creation(app, monkeypatch):
    _create()

    def broken(user_id):
        raise OperationalError("SELECT", {}, Exception("store down"))

    monkeypatch.setattr(order_service, "find_latest_open_order", broken)
    res = _create()
    assert res["duplicate"] is False
    assert Order.query.count() == 2


def test_get_order_by_id_or_order_no_scoped_to_user(app):
    order = _create()["order"]
    assert get_order_service(QueryOrderRequest(user_id="u1", order_id=order.id)).id == order.id
    assert get_order_service(QueryOrderRequest(user_id="u1", order_no=order.order_no)).id == order.id
    assert get_order_service(QueryOrderRequest(user_id="u2", order_id=order.id)) is None


def test_deleted_orders_are_hidden(app):
    order = _create()["order"]
    order.is_deleted = True
    db.session.commit()
    assert get_order_service(QueryOrderRequest(user_id="u1", order_id=order.id)) is None
    assert list_orders_service(ListOrdersRequest(user_id="u1"))["pagination"]["total"] == 0


def test_list_orders_paginates_newest_first(app):
    now = datetime.now()
    for i in range(3):
        _create()["order"].create_time = now - timedelta(hours=3 - i)
        db.session.commit()

    page1 = list_orders_service(ListOrdersRequest(user_id="u1", page=1, page_size=2))
    page2 = list_orders_service(ListOrdersRequest(user_id="u1", page=2, page_size=2))
    assert page1["pagination"] == {"page": 1, "pageSize": 2, "total": 3, "totalPages": 2}
    assert len(page1["items"]) == 2 and len(page2["items"]) == 1
    times = [datetime.fromisoformat(o["create_time"]) for o in page1["items"] + page2["items"]]
    assert times == sorted(times, reverse=True)


def test_list_orders_filters_by_status(app):
    order = _create()["order"]
    cancel_order_service(CancelOrderRequest(user_id="u1", order_id=order.id))
    _create()
    res = list_orders_service(ListOrdersRequest(user_id="u1", status="cancelled"))
    assert [o["id"] for o in res["items"]] == [order.id]


def test_cancel_pending_order(app):
    order = _create()["order"]
    assert cancel_order_service(CancelOrderRequest(user_id="u1", order_id=order.id)) == {"ok": True}
    order = Order.query.filter_by(id=order.id).first()
    assert order.status == "cancelled"
    assert order.pay_status == "cancelled"


def test_cancel_paid_order_is_invalid_state(app):
    order = _create()["order"]
    handle_payment_success(pay_notify_payload(order.order_no, 990))
    res = cancel_order_service(CancelOrderRequest(user_id="u1", order_id=order.id))
    assert res == {"error": "invalid_state"}
    assert Order.query.filter_by(id=order.id).first().pay_status == "paid"


def test_cancel_unknown_order_is_not_found(app):
    assert cancel_order_service(CancelOrderRequest(user_id="u1", order_id="missing")) == {"error": "not_found"}
