import json
import logging
from dataclasses import dataclass
from typing import Optional
from urllib import request as urlreq

from flask import current_app

from ..infra.models import Order

logger = logging.getLogger(__name__)

# 云托管环境内免鉴权调用开放接口
SUBSCRIBE_SEND_URL = "http://api.weixin.qq.com/cgi-bin/message/subscribe/send"


@dataclass
class NotifyResult:
    ok: bool
    error: Optional[str] = None


def fire_and_forget(task, *args) -> NotifyResult:
    """
    执行通知任务，失败只记录日志，不影响触发它的业务结果
    """
    try:
        task(*args)
        return NotifyResult(ok=True)
    except Exception as e:
        logger.warning("notify task %s failed: %s", getattr(task, "__name__", task), e)
        return NotifyResult(ok=False, error=str(e))


def _send_subscribe_message(openid: str, template_id: str, page: str, data: dict) -> None:
    cfg = current_app.config
    if cfg["WX_NOTIFY_MODE"] != "REAL" or not template_id:
        logger.info("subscribe message (log only) to=%s page=%s data=%s", openid, page, data)
        return
    body = json.dumps({
        "touser": openid,
        "template_id": template_id,
        "page": page,
        "data": data,
    }, ensure_ascii=False).encode("utf-8")
    req = urlreq.Request(SUBSCRIBE_SEND_URL, data=body, headers={"Content-Type": "application/json"})
    resp = urlreq.urlopen(req, timeout=cfg["EXTERNAL_TIMEOUT_SECONDS"])
    res = json.loads(resp.read().decode("utf-8"))
    if res.get("errcode"):
        raise RuntimeError(f"subscribe send failed: {res.get('errcode')} {res.get('errmsg')}")


def send_payment_success(order: Order) -> None:
    _send_subscribe_message(
        order.openid or order.user_id,
        current_app.config["WX_TEMPLATE_PAY_SUCCESS"],
        f"/pages/order/detail?id={order.id}",
        {
            "thing1": {"value": order.plan_name},
            "amount2": {"value": f"{order.amount / 100:.2f}"},
            "time3": {"value": order.pay_time.strftime("%Y-%m-%d %H:%M:%S") if order.pay_time else ""},
        },
    )


def send_refund_success(order: Order, refund_fee: int) -> None:
    _send_subscribe_message(
        order.openid or order.user_id,
        current_app.config["WX_TEMPLATE_REFUND_SUCCESS"],
        f"/pages/order/detail?id={order.id}",
        {
            "thing1": {"value": order.plan_name},
            "amount2": {"value": f"{refund_fee / 100:.2f}"},
        },
    )
