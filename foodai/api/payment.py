import logging
import xml.etree.ElementTree as ET
from flask import Blueprint, request, jsonify, Response

from ..services.payment_service import handle_notify, verify_payment_service
from ..services.wechat_service import parse_xml, to_xml

logger = logging.getLogger(__name__)

payment_bp = Blueprint("payment_bp", __name__)


def _read_notify_payload():
    """
    微信支付 v2 回调为 XML；云函数转发时为 JSON {"xml": {...}}
    """
    body = request.get_data() or b""
    if body.lstrip().startswith(b"<"):
        try:
            return parse_xml(body)
        except ET.ParseError as e:
            logger.warning("invalid notify xml: %s", e)
            return None
    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        return None
    data = payload.get("xml", payload)
    if not isinstance(data, dict):
        return None
    return {k: "" if v is None else str(v) for k, v in data.items()}


@payment_bp.post('/pay/notify')
def pay_notify():
    """
    微信支付/退款结果通知
    """
    return_code, return_msg = handle_notify(_read_notify_payload())
    return Response(
        to_xml({"return_code": return_code, "return_msg": return_msg}),
        mimetype="text/xml",
    )


@payment_bp.post('/pay/verify')
def pay_verify():
    """
    小程序端主动校验支付结果
    POST Body: { "orderId", "transactionId" }
    """
    payload = request.get_json(force=True, silent=True) or {}
    order_id = payload.get("orderId")
    transaction_id = payload.get("transactionId")
    if not order_id or not transaction_id:
        return jsonify({"success": False, "message": "参数不完整", "code": 400}), 400
    try:
        res = verify_payment_service(order_id, transaction_id)
    except Exception as e:
        logger.exception("verify payment failed for %s", order_id)
        return jsonify({"success": False, "message": str(e) or "验证失败", "code": 500}), 500
    if not res:
        return jsonify({"success": False, "message": "支付验证失败", "code": 404}), 404
    return jsonify({"success": True, "data": res, "message": "支付验证成功", "code": 0})
