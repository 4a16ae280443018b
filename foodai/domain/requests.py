"""
订单云函数的请求类型

小程序端以 {action, data} 的形式调用，这里把每种 action 解析为独立的请求类型，
字段校验在解析时完成，Service 层只接收已校验的请求对象。
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any

from .errors import ValidationError
from .order import PLANS


@dataclass(frozen=True)
class CreateOrderRequest:
    user_id: str
    plan_type: str
    amount: int
    description: str
    openid: str = ""


@dataclass(frozen=True)
class QueryOrderRequest:
    user_id: str
    order_id: Optional[str] = None
    order_no: Optional[str] = None


@dataclass(frozen=True)
class ListOrdersRequest:
    user_id: str
    page: int = 1
    page_size: int = 10
    status: Optional[str] = None


@dataclass(frozen=True)
class CancelOrderRequest:
    user_id: str
    order_id: str


def _int_field(data: Dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key, default)
    # 小数不截断取整
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{key} 必须为整数")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} 必须为整数")


def _amount_field(value: Any) -> int:
    """
    订单金额，单位为分，必须是正整数
    """
    try:
        amount = _int_field({"amount": value}, "amount")
    except ValidationError:
        raise ValidationError("无效的订单金额")
    if amount <= 0:
        raise ValidationError("无效的订单金额")
    return amount


def _build_create(data: Dict[str, Any]) -> CreateOrderRequest:
    user_id = data.get("userId")
    plan_type = data.get("planType")
    description = data.get("description")
    if not user_id:
        raise ValidationError("用户ID不能为空")
    if not plan_type or plan_type not in PLANS:
        raise ValidationError("无效的套餐类型")
    amount = _amount_field(data.get("amount"))
    if not description:
        raise ValidationError("订单描述不能为空")
    return CreateOrderRequest(
        user_id=str(user_id),
        plan_type=plan_type,
        amount=amount,
        description=str(description),
        openid=str(data.get("openid") or ""),
    )


def _build_query(data: Dict[str, Any]) -> QueryOrderRequest:
    order_id = data.get("orderId")
    order_no = data.get("orderNo")
    if not order_id and not order_no:
        raise ValidationError("需要订单ID或订单号")
    if not data.get("userId"):
        raise ValidationError("用户ID不能为空")
    return QueryOrderRequest(user_id=str(data["userId"]), order_id=order_id, order_no=order_no)


def _build_list(data: Dict[str, Any]) -> ListOrdersRequest:
    if not data.get("userId"):
        raise ValidationError("用户ID不能为空")
    page = _int_field(data, "page", 1)
    page_size = _int_field(data, "pageSize", 10)
    if page < 1 or page_size < 1 or page_size > 100:
        raise ValidationError("分页参数无效")
    return ListOrdersRequest(
        user_id=str(data["userId"]),
        page=page,
        page_size=page_size,
        status=data.get("status") or None,
    )


def _build_cancel(data: Dict[str, Any]) -> CancelOrderRequest:
    if not data.get("orderId") or not data.get("userId"):
        raise ValidationError("订单ID和用户ID不能为空")
    return CancelOrderRequest(user_id=str(data["userId"]), order_id=str(data["orderId"]))


_BUILDERS = {
    "create": _build_create,
    "query": _build_query,
    "list": _build_list,
    "cancel": _build_cancel,
}


def parse_order_request(action: str, data: Optional[Dict[str, Any]]):
    """
    将 {action, data} 解析为对应的请求类型
    :raises ValidationError: 未知 action 或字段校验失败
    """
    builder = _BUILDERS.get(action)
    if builder is None:
        raise ValidationError("未知的操作类型")
    if data is not None and not isinstance(data, dict):
        raise ValidationError("data 必须为对象")
    return builder(data or {})
