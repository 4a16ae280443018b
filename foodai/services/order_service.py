import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..domain.order import (
    PayStatus, OrderStatus, get_plan_config, generate_order_no, compute_order_expire_time, can_transition,
)
from ..domain.requests import CreateOrderRequest, QueryOrderRequest, ListOrdersRequest, CancelOrderRequest
from ..infra.models import Order, db
from ..infra.repository import (
    insert_order, find_latest_open_order, get_user_order, list_user_orders, transition_order,
)
from .wechat_service import jsapi_unified_order, build_jsapi_params

logger = logging.getLogger(__name__)

# 返回已存在的未完成订单时使用的业务码
CODE_PENDING_ORDER_EXISTS = 2001


def _find_recent_pending_order(user_id: str, now: datetime) -> Optional[Order]:
    """
    重复下单拦截：最近 N 分钟内的最新一笔未完成订单
    查询失败时视为没有重复订单，不阻塞下单
    """
    window = timedelta(minutes=current_app.config["DUPLICATE_ORDER_WINDOW_MINUTES"])
    try:
        latest = find_latest_open_order(user_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("pending order lookup failed for %s: %s", user_id, e)
        return None
    if latest and now - latest.create_time < window:
        return latest
    return None


def _create_pay_data(req: CreateOrderRequest, order_no: str) -> Dict[str, Any]:
    cfg = current_app.config
    prepay = jsapi_unified_order(
        appid=cfg["WX_APPID"],
        mchid=cfg["WX_MCH_ID"],
        api_key=cfg["WX_PAY_API_KEY"],
        openid=req.openid or req.user_id,
        description=req.description,
        out_trade_no=order_no,
        amount_cents=req.amount,
        notify_url=cfg["WX_PAY_NOTIFY_URL"],
        mode=cfg["WX_PAY_MODE"],
        timeout=cfg["EXTERNAL_TIMEOUT_SECONDS"],
    )
    if prepay.get("error"):
        raise RuntimeError(f"统一下单失败: {prepay.get('detail')}")
    return build_jsapi_params(cfg["WX_APPID"], prepay["prepay_id"], cfg["WX_PAY_API_KEY"])


def create_order_service(req: CreateOrderRequest) -> Dict[str, Any]:
    """
    创建订单服务
    1. 5 分钟内存在未完成订单则直接返回该订单
    2. 调用支付网关获取支付参数
    3. 持久化订单
    :param req: 已校验的下单请求
    :return: {"order": Order, "duplicate": bool}
    """
    now = datetime.now()
    existing = _find_recent_pending_order(req.user_id, now)
    if existing:
        logger.info("return recent pending order %s for %s", existing.order_no, req.user_id)
        return {"order": existing, "duplicate": True}

    plan = get_plan_config(req.plan_type)
    order_no = generate_order_no(now)
    pay_data = _create_pay_data(req, order_no)

    order = insert_order({
        "order_no": order_no,
        "user_id": req.user_id,
        "openid": req.openid,
        "plan_type": req.plan_type,
        "plan_name": plan.name,
        "amount": req.amount,
        "description": req.description,
        "duration": plan.duration,
        "features": list(plan.features),
        "pay_data": pay_data,
        "pay_status": PayStatus.PENDING.value,
        "status": OrderStatus.CREATED.value,
        "create_time": now,
        "update_time": now,
        "expire_time": compute_order_expire_time(req.plan_type, now),
    })
    logger.info("order created %s user=%s plan=%s amount=%s", order.order_no, req.user_id, req.plan_type, req.amount)
    return {"order": order, "duplicate": False}


def created_order_view(order: Order) -> Dict[str, Any]:
    return {
        "orderId": order.id,
        "orderNo": order.order_no,
        "amount": order.amount,
        "description": order.description,
        "planType": order.plan_type,
        "planName": order.plan_name,
        "payData": order.pay_data or {},
        "createTime": order.create_time.isoformat(),
    }


def get_order_service(req: QueryOrderRequest) -> Optional[Order]:
    return get_user_order(req.user_id, order_id=req.order_id, order_no=req.order_no)


def list_orders_service(req: ListOrdersRequest) -> Dict[str, Any]:
    items, total = list_user_orders(req.user_id, req.page, req.page_size, req.status)
    return {
        "items": [o.to_dict() for o in items],
        "pagination": {
            "page": req.page,
            "pageSize": req.page_size,
            "total": total,
            "totalPages": math.ceil(total / req.page_size),
        },
    }


def cancel_order_service(req: CancelOrderRequest) -> Dict[str, Any]:
    """
    取消订单，只能取消未支付的订单
    """
    order = get_user_order(req.user_id, order_id=req.order_id)
    if not order:
        return {"error": "not_found"}
    if not can_transition(PayStatus(order.pay_status), PayStatus.CANCELLED):
        return {"error": "invalid_state"}

    now = datetime.now()
    ok = transition_order(order.id, PayStatus.PENDING, {
        "status": OrderStatus.CANCELLED.value,
        "pay_status": PayStatus.CANCELLED.value,
        "update_time": now,
    })
    # 读检查之后被并发回调改为已支付
    if not ok:
        return {"error": "invalid_state"}
    logger.info("order cancelled %s", order.order_no)
    return {"ok": True}
