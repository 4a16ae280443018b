import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple

from dateutil import parser as date_parser
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..domain.errors import AmountMismatchError, SignatureInvalidError
from ..domain.order import PayStatus, OrderStatus, can_transition
from ..infra.models import Order, db
from ..infra.repository import (
    get_order_by_no, transition_order, mark_entitlement_granted, list_ungranted_paid_orders, find_paid_order,
)
from .notify_service import NotifyResult, fire_and_forget, send_payment_success, send_refund_success
from .vip_service import grant_vip, revoke_vip_if_expired
from .wechat_service import verify_sign

logger = logging.getLogger(__name__)

ACK_SUCCESS = "SUCCESS"
ACK_FAIL = "FAIL"


class ReconcileOutcome(str, Enum):
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    REFUNDED = "refunded"
    ALREADY_REFUNDED = "already_refunded"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_STATE = "invalid_state"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    order_no: str
    entitlement_granted: bool = False
    notify: Optional[NotifyResult] = None


def parse_time_end(time_end: Optional[str]) -> datetime:
    """
    解析微信支付完成时间 yyyyMMddHHmmss，格式不对时取当前时间
    """
    try:
        return datetime.strptime(str(time_end), "%Y%m%d%H%M%S")
    except (TypeError, ValueError):
        logger.warning("invalid time_end %r, use now", time_end)
        return datetime.now()


def _parse_refund_time(success_time: Optional[str]) -> datetime:
    if not success_time:
        return datetime.now()
    try:
        return date_parser.parse(success_time).replace(tzinfo=None)
    except (ValueError, OverflowError):
        logger.warning("invalid success_time %r, use now", success_time)
        return datetime.now()


def _apply_entitlement(order: Order) -> bool:
    """
    发放会员权益；失败不回滚订单的已支付状态，留给 replay-entitlements 补发
    """
    order_id, order_no = order.id, order.order_no
    try:
        grant_vip(order.user_id, order.plan_type, order.duration)
        mark_entitlement_granted(order_id)
        return True
    except Exception:
        db.session.rollback()
        logger.exception("grant vip failed for order %s, left for replay", order_no)
        return False


def handle_payment_success(data: Dict[str, Any]) -> ReconcileResult:
    """
    处理支付成功回调（调用前签名必须已校验通过）
    1. 按订单号查询订单
    2. 已支付则直接返回（回调可能重复投递）
    3. 校验金额，不一致直接失败，不修改订单
    4. 条件更新 pending -> paid
    5. 发放会员权益、发送通知
    :raises AmountMismatchError: 回调金额与订单金额不一致
    """
    out_trade_no = data.get("out_trade_no") or ""
    order = get_order_by_no(out_trade_no)
    if not order:
        logger.error("payment callback for unknown order %s", out_trade_no)
        return ReconcileResult(ReconcileOutcome.ORDER_NOT_FOUND, out_trade_no)

    if order.pay_status == PayStatus.PAID.value:
        logger.info("order already paid %s", out_trade_no)
        return ReconcileResult(ReconcileOutcome.ALREADY_PAID, out_trade_no, order.entitlement_granted)

    total_fee = data.get("total_fee")
    try:
        paid_amount = int(total_fee)
    except (TypeError, ValueError):
        paid_amount = None
    if paid_amount != order.amount:
        raise AmountMismatchError(out_trade_no, order.amount, total_fee)

    if not can_transition(PayStatus(order.pay_status), PayStatus.PAID):
        # 已取消订单收到了付款，需要人工退款
        logger.error("payment for order %s in state %s, manual refund required", out_trade_no, order.pay_status)
        return ReconcileResult(ReconcileOutcome.INVALID_STATE, out_trade_no)

    now = datetime.now()
    ok = transition_order(order.id, PayStatus.PENDING, {
        "pay_status": PayStatus.PAID.value,
        "status": OrderStatus.PAID.value,
        "transaction_id": data.get("transaction_id"),
        "pay_time": parse_time_end(data.get("time_end")),
        "update_time": now,
    })
    order = get_order_by_no(out_trade_no)
    if not ok:
        # 并发投递的另一次回调已经完成了更新
        if order.pay_status == PayStatus.PAID.value:
            logger.info("order paid by concurrent callback %s", out_trade_no)
            return ReconcileResult(ReconcileOutcome.ALREADY_PAID, out_trade_no, order.entitlement_granted)
        logger.error("order %s moved to %s before payment applied", out_trade_no, order.pay_status)
        return ReconcileResult(ReconcileOutcome.INVALID_STATE, out_trade_no)

    granted = _apply_entitlement(order)
    notify = fire_and_forget(send_payment_success, order)
    logger.info("payment handled %s transaction=%s", out_trade_no, order.transaction_id)
    return ReconcileResult(ReconcileOutcome.PAID, out_trade_no, granted, notify)


def handle_refund_success(data: Dict[str, Any]) -> ReconcileResult:
    """
    处理退款成功回调
    只有已支付订单可以退款；会员只在已到期时才回收
    """
    out_trade_no = data.get("out_trade_no") or ""
    order = get_order_by_no(out_trade_no)
    if not order:
        logger.error("refund callback for unknown order %s", out_trade_no)
        return ReconcileResult(ReconcileOutcome.ORDER_NOT_FOUND, out_trade_no)

    if order.pay_status == PayStatus.REFUNDED.value:
        # 重复投递时再检查一次会员状态，revoke 本身是幂等的
        revoke_vip_if_expired(order.user_id)
        return ReconcileResult(ReconcileOutcome.ALREADY_REFUNDED, out_trade_no)

    if not can_transition(PayStatus(order.pay_status), PayStatus.REFUNDED):
        logger.error("refund for order %s in state %s ignored", out_trade_no, order.pay_status)
        return ReconcileResult(ReconcileOutcome.INVALID_STATE, out_trade_no)

    refund_fee = data.get("refund_fee")
    try:
        refund_fee = int(refund_fee)
    except (TypeError, ValueError):
        refund_fee = None

    now = datetime.now()
    ok = transition_order(order.id, PayStatus.PAID, {
        "pay_status": PayStatus.REFUNDED.value,
        "status": OrderStatus.REFUNDED.value,
        "refund_id": data.get("refund_id"),
        "refund_fee": refund_fee,
        "refund_time": _parse_refund_time(data.get("success_time")),
        "update_time": now,
    })
    order = get_order_by_no(out_trade_no)
    if not ok:
        if order.pay_status == PayStatus.REFUNDED.value:
            return ReconcileResult(ReconcileOutcome.ALREADY_REFUNDED, out_trade_no)
        return ReconcileResult(ReconcileOutcome.INVALID_STATE, out_trade_no)

    revoke_vip_if_expired(order.user_id)
    notify = fire_and_forget(send_refund_success, order, refund_fee or 0)
    logger.info("refund handled %s refund_id=%s", out_trade_no, order.refund_id)
    return ReconcileResult(ReconcileOutcome.REFUNDED, out_trade_no, notify=notify)


def authenticate_notify(payload: Dict[str, Any]) -> None:
    """
    :raises SignatureInvalidError: 签名缺失或不正确
    """
    if not verify_sign(payload, payload.get("sign"), current_app.config["WX_PAY_API_KEY"]):
        raise SignatureInvalidError("签名验证失败")


def handle_notify(payload: Optional[Dict[str, Any]]) -> Tuple[str, str]:
    """
    微信支付回调入口，返回 (return_code, return_msg)
    FAIL 会触发微信重新投递；SUCCESS 之后不再投递
    业务性失败（订单不存在、金额不一致、状态不允许）记录日志后仍返回 SUCCESS，
    存储异常返回 FAIL 让微信稍后重试
    """
    if not payload:
        return ACK_FAIL, "参数错误"

    try:
        authenticate_notify(payload)
    except SignatureInvalidError as e:
        logger.warning("notify rejected: %s out_trade_no=%s", e.message, payload.get("out_trade_no"))
        return ACK_FAIL, e.message

    if payload.get("result_code") != "SUCCESS":
        logger.error("wechat pay notify failed: %s", payload.get("err_code_des") or payload.get("return_msg"))
        return ACK_SUCCESS, "OK"

    try:
        if payload.get("refund_id"):
            result = handle_refund_success(payload)
        else:
            result = handle_payment_success(payload)
        logger.info("notify handled %s: %s", result.order_no, result.outcome.value)
    except AmountMismatchError as e:
        logger.critical("amount mismatch on %s: order=%s paid=%s", e.order_no, e.order_amount, e.paid_amount)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("store error handling notify %s", payload.get("out_trade_no"))
        return ACK_FAIL, "处理失败"
    except Exception:
        db.session.rollback()
        logger.exception("unexpected error handling notify %s", payload.get("out_trade_no"))
        return ACK_FAIL, "处理失败"

    return ACK_SUCCESS, "OK"


def verify_payment_service(order_id: str, transaction_id: str) -> Optional[Dict[str, Any]]:
    """
    小程序端主动校验支付结果
    """
    order = find_paid_order(order_id, transaction_id)
    if not order:
        return None
    return {
        "verified": True,
        "order": {
            "id": order.id,
            "orderNo": order.order_no,
            "amount": order.amount,
            "planType": order.plan_type,
            "payTime": order.pay_time.isoformat() if order.pay_time else None,
        },
    }


def replay_entitlements(limit: int = 500) -> int:
    """
    为已支付但权益未发放的订单补发会员
    :return: 补发成功的订单数
    """
    count = 0
    for order in list_ungranted_paid_orders(limit):
        if _apply_entitlement(order):
            count += 1
            logger.info("entitlement replayed for %s", order.order_no)
    return count
