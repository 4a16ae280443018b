from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Dict, Any
import random
import string

from dateutil.relativedelta import relativedelta


class PayStatus(str, Enum):
    """
    支付状态枚举
    PENDING: 待支付
    PAID: 已支付
    REFUNDED: 已退款（支付后）
    CANCELLED: 已取消（未支付时）
    """
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class OrderStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# 视为"未完成"的订单状态，用于重复下单拦截
OPEN_ORDER_STATUSES = ("created", "pending")


@dataclass
class PlanConfig:
    """
    会员套餐配置
    """
    plan_type: str
    name: str
    duration: int  # 天
    price: int  # 分
    features: List[str] = field(default_factory=list)
    discount: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_type": self.plan_type,
            "name": self.name,
            "duration": self.duration,
            "price": self.price,
            "features": list(self.features),
            "discount": self.discount,
        }


PLANS: Dict[str, PlanConfig] = {
    "monthly": PlanConfig(
        plan_type="monthly",
        name="月付会员",
        duration=30,
        price=990,
        features=["无限次AI识别", "基础营养分析"],
    ),
    "yearly": PlanConfig(
        plan_type="yearly",
        name="年付会员",
        duration=365,
        price=9900,
        features=["无限次AI识别", "高级营养分析", "专属客服"],
        discount="8.3折",
    ),
    "lifetime": PlanConfig(
        plan_type="lifetime",
        name="永久会员",
        duration=36500,  # 100年
        price=29900,
        features=["无限次AI识别", "专业营养分析", "专属客服", "永久更新"],
        discount="最划算",
    ),
}

# "永久"用 100 年代替
LIFETIME_YEARS = 100


def get_plan_config(plan_type: str) -> PlanConfig:
    """
    获取套餐配置，未知套餐按月付处理
    """
    return PLANS.get(plan_type) or PLANS["monthly"]


def generate_order_no(now: datetime) -> str:
    """
    生成订单号：FOODAI + yyyyMMdd + 9位随机大写字母数字
    随机串碰撞概率极低，由 order_no 唯一索引兜底
    """
    alphabet = string.ascii_uppercase + string.digits
    rand_suffix = "".join(random.choice(alphabet) for _ in range(9))
    return f"FOODAI{now.strftime('%Y%m%d')}{rand_suffix}"


def compute_order_expire_time(plan_type: str, now: datetime) -> datetime:
    """
    计算订单对应的权益截止时间
    :param plan_type: 套餐类型
    :param now: 下单时间
    """
    if plan_type == "lifetime":
        return now + relativedelta(years=LIFETIME_YEARS)
    return now + timedelta(days=get_plan_config(plan_type).duration)


def can_transition(current: PayStatus, target: PayStatus) -> bool:
    """
    支付状态机校验，只允许向前流转
    :param current: 当前状态
    :param target: 目标状态
    :return: 是否允许流转
    """
    # 待支付 -> 已支付 / 已取消
    if current == PayStatus.PENDING and target in {PayStatus.PAID, PayStatus.CANCELLED}:
        return True
    # 已支付 -> 已退款
    if current == PayStatus.PAID and target == PayStatus.REFUNDED:
        return True
    return False
