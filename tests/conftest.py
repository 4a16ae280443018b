import pytest

from foodai import create_app
from foodai.domain.requests import CreateOrderRequest
from foodai.infra.models import db
from foodai.services.order_service import create_order_service
from foodai.services.wechat_service import build_sign

API_KEY = "test-api-key-0123456789abcdef0123"


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "WX_APPID": "wx-test-appid",
        "WX_MCH_ID": "1900000109",
        "WX_PAY_API_KEY": API_KEY,
        "WX_PAY_MODE": "MOCK",
        "WX_NOTIFY_MODE": "LOG",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def signed(payload, api_key=API_KEY):
    data = {k: str(v) for k, v in payload.items()}
    data["sign"] = build_sign(data, api_key)
    return data


def pay_notify_payload(order_no, total_fee, transaction_id="4200001234202401011234567890", time_end="20240101120000"):
    return signed({
        "appid": "wx-test-appid",
        "mch_id": "1900000109",
        "nonce_str": "5K8264ILTKCH16CQ2502SI8ZNMTM67VS",
        "result_code": "SUCCESS",
        "return_code": "SUCCESS",
        "openid": "oUpF8uMuAJO_M2pxb1Q9zNjWeS6o",
        "out_trade_no": order_no,
        "transaction_id": transaction_id,
        "total_fee": total_fee,
        "time_end": time_end,
    })


def refund_notify_payload(order_no, refund_fee, refund_id="50000408942018111907145868882"):
    return signed({
        "appid": "wx-test-appid",
        "mch_id": "1900000109",
        "nonce_str": "TeqClE3i0mvn3DrK",
        "result_code": "SUCCESS",
        "return_code": "SUCCESS",
        "out_refund_no": "R" + order_no,
        "out_trade_no": order_no,
        "refund_id": refund_id,
        "refund_fee": refund_fee,
        "success_time": "2024-01-02 09:46:01",
    })


@pytest.fixture
def monthly_order(app):
    res = create_order_service(CreateOrderRequest(
        user_id="u1", plan_type="monthly", amount=990, description="月付会员"))
    return res["order"]
