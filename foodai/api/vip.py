from flask import Blueprint, jsonify

from ..domain.order import PLANS
from ..domain.vip import VIP_BENEFITS
from ..infra.context import get_current_user_id
from ..services.vip_service import get_vip_status

vip_bp = Blueprint("vip_bp", __name__)


@vip_bp.get('/plans')
def list_plans():
    """
    会员套餐列表（公开）
    """
    return jsonify({
        "success": True,
        "data": {"plans": [p.to_dict() for p in PLANS.values()]},
        "message": "",
        "code": 0,
    })


@vip_bp.get('/vip/status')
def vip_status_endpoint():
    """
    当前用户的会员状态
    Header: X-WX-OPENID / X-User-ID
    """
    user_id = get_current_user_id()
    if not user_id:
        return jsonify({"success": False, "message": "缺少用户ID", "code": 400}), 400
    return jsonify({"success": True, "data": get_vip_status(user_id), "message": "", "code": 0})


@vip_bp.get('/vip/benefits')
def vip_benefits_endpoint():
    """
    会员特权列表（公开），按等级分组
    """
    data = {tier: [b.to_dict() for b in items] for tier, items in VIP_BENEFITS.items()}
    return jsonify({"success": True, "data": data, "message": "", "code": 0})
