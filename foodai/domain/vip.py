from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
import math

from dateutil.relativedelta import relativedelta

from .order import LIFETIME_YEARS


def compute_vip_expire_time(plan_type: str, base_duration_days: int, now: datetime) -> datetime:
    """
    按套餐计算会员到期时间（从当前时间起算）
    monthly: +1 自然月; yearly: +1 自然年; lifetime: +100 年; 其他: +base_duration_days 天
    """
    if plan_type == "monthly":
        return now + relativedelta(months=1)
    if plan_type == "yearly":
        return now + relativedelta(years=1)
    if plan_type == "lifetime":
        return now + relativedelta(years=LIFETIME_YEARS)
    return now + timedelta(days=int(base_duration_days or 0))


def vip_status(is_vip: bool, expire_time: Optional[datetime], now: datetime) -> Dict[str, Any]:
    """
    会员状态摘要：not_vip / active / expired
    """
    if not is_vip or not expire_time:
        return {"status": "not_vip", "isVip": False, "daysRemaining": 0}
    if expire_time <= now:
        return {"status": "expired", "isVip": False, "daysRemaining": 0}
    days = math.ceil((expire_time - now).total_seconds() / 86400)
    return {"status": "active", "isVip": True, "daysRemaining": days}


@dataclass(frozen=True)
class VipBenefit:
    title: str
    description: str
    icon: str

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "description": self.description, "icon": self.icon}


# 会员特权，按 basic / advanced / premium 分级展示
VIP_BENEFITS: Dict[str, List[VipBenefit]] = {
    "basic": [
        VipBenefit("无限次AI识别", "拍照识别和搜索识别无次数限制", "infinite"),
        VipBenefit("高级营养分析", "详细的营养成分分析和健康建议", "chart"),
        VipBenefit("个性化食谱推荐", "基于饮食偏好推荐个性化食谱", "recipe"),
        VipBenefit("数据云端同步", "多设备数据同步和备份", "cloud"),
    ],
    "advanced": [
        VipBenefit("无广告纯净体验", "去除所有广告干扰", "ad-free"),
        VipBenefit("批量识别功能", "一次识别多张图片", "batch"),
        VipBenefit("历史记录无限制", "保存所有识别记录", "history"),
        VipBenefit("高清图片识别", "支持更高分辨率的图片", "hd"),
    ],
    "premium": [
        VipBenefit("专属客服支持", "优先客服响应和问题解决", "support"),
        VipBenefit("优先体验新功能", "提前体验最新功能", "early-access"),
        VipBenefit("专属会员标识", "独特的VIP标识和勋章", "badge"),
        VipBenefit("数据分析报告", "月度饮食分析报告", "report"),
    ],
}
