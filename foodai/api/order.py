import logging
from flask import Blueprint, request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..domain.errors import ServiceError, InvalidStateError
from ..domain.requests import (
    parse_order_request, CreateOrderRequest, QueryOrderRequest, ListOrdersRequest, CancelOrderRequest,
)
from ..infra.context import get_current_user_id, get_current_openid
from ..infra.models import db
from ..services.order_service import (
    create_order_service, created_order_view, get_order_service, list_orders_service, cancel_order_service,
    CODE_PENDING_ORDER_EXISTS,
)

logger = logging.getLogger(__name__)

order_bp = Blueprint("order_bp", __name__)


def _ok(data=None, message="", code=0, status=200):
    return jsonify({"success": True, "data": data, "message": message, "code": code}), status


def _fail(message, code, status):
    return jsonify({"success": False, "message": message, "code": code}), status


def dispatch_order_request(req):
    """
    按请求类型分发到对应的订单服务
    """
    if isinstance(req, CreateOrderRequest):
        res = create_order_service(req)
        order = res["order"]
        if res["duplicate"]:
            return _ok(order.to_dict(), "存在未完成订单", CODE_PENDING_ORDER_EXISTS)
        return _ok(created_order_view(order), "订单创建成功")

    if isinstance(req, QueryOrderRequest):
        order = get_order_service(req)
        if not order:
            return _fail("订单不存在", 404, 404)
        return _ok(order.to_dict(), "查询成功")

    if isinstance(req, ListOrdersRequest):
        return _ok(list_orders_service(req), "获取订单列表成功")

    if isinstance(req, CancelOrderRequest):
        res = cancel_order_service(req)
        if res.get("error") == "not_found":
            return _fail("订单不存在", 404, 404)
        if res.get("error") == "invalid_state":
            err = InvalidStateError("只能取消未支付的订单")
            return jsonify(err.to_dict()), err.http_status
        return _ok(None, "订单取消成功")

    raise TypeError(f"unsupported order request: {type(req).__name__}")


def _handle(action, data):
    """
    解析请求并执行，统一处理业务异常与存储异常
    """
    if data is None:
        data = {}
    # 非对象的 data 交给 parse_order_request 拒绝
    if isinstance(data, dict):
        data = dict(data)
        # 未显式传 userId 时使用请求上下文中的用户
        data.setdefault("userId", get_current_user_id())
        if action == "create":
            data.setdefault("openid", get_current_openid())
    try:
        req = parse_order_request(action, data)
        return dispatch_order_request(req)
    except ServiceError as e:
        return jsonify(e.to_dict()), e.http_status
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("store error on order action %s", action)
        return _fail("服务器内部错误", 500, 500)
    except Exception as e:
        logger.exception("order action %s failed", action)
        return _fail(str(e) or "服务器内部错误", 500, 500)


@order_bp.post('/orders/invoke')
def invoke_order_action():
    """
    云函数风格入口
    POST Body: { "action": "create|query|list|cancel", "data": {...} }
    """
    payload = request.get_json(force=True, silent=True) or {}
    return _handle(payload.get("action"), payload.get("data"))


@order_bp.post('/orders')
def create_order_endpoint():
    """
    创建订单
    POST Body: { "userId", "planType", "amount", "description" }
    """
    payload = request.get_json(force=True, silent=True) or {}
    return _handle("create", payload)


@order_bp.get('/orders')
def list_orders_endpoint():
    """
    我的订单列表
    Query: page, pageSize, status
    Header: X-WX-OPENID / X-User-ID
    """
    return _handle("list", {
        "page": request.args.get("page", 1),
        "pageSize": request.args.get("pageSize", 10),
        "status": request.args.get("status"),
    })


@order_bp.get('/orders/<order_id>')
def get_order_endpoint(order_id):
    return _handle("query", {"orderId": order_id})


@order_bp.get('/orders/no/<order_no>')
def get_order_by_no_endpoint(order_no):
    return _handle("query", {"orderNo": order_no})


@order_bp.post('/orders/<order_id>/cancel')
def cancel_order_endpoint(order_id):
    return _handle("cancel", {"orderId": order_id})
