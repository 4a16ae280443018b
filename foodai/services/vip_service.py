import logging
from datetime import datetime
from typing import Dict, Any, Optional

from sqlalchemy.exc import IntegrityError

from ..domain.vip import compute_vip_expire_time, vip_status
from ..infra.models import db
from ..infra.repository import (
    get_live_vip, insert_vip, extend_vip, deactivate_vip, sync_user_vip,
)

logger = logging.getLogger(__name__)


def grant_vip(user_id: str, plan_type: str, base_duration_days: int, now: Optional[datetime] = None) -> datetime:
    """
    发放会员权益
    新到期时间晚于现有记录时才更新，到期时间只增不减
    用户表的冗余字段始终与 user_vip 记录保持一致
    :return: 发放后的实际到期时间
    """
    now = now or datetime.now()
    new_expire = compute_vip_expire_time(plan_type, base_duration_days, now)

    vip = get_live_vip(user_id)
    if vip is None:
        try:
            insert_vip(user_id, plan_type, new_expire, now)
            logger.info("vip created for %s plan=%s expire=%s", user_id, plan_type, new_expire)
        except IntegrityError:
            # 并发的首次发放已经建好了记录，改走续期
            db.session.rollback()
            vip = get_live_vip(user_id)
            if vip is None:
                raise
            logger.info("vip record created concurrently for %s", user_id)
    if vip is not None:
        if extend_vip(vip.id, plan_type, new_expire, now):
            logger.info("vip extended for %s plan=%s expire=%s", user_id, plan_type, new_expire)
        else:
            logger.info("vip kept for %s, existing expire %s >= %s", user_id, vip.expire_time, new_expire)

    vip = get_live_vip(user_id)
    sync_user_vip(user_id, vip.is_vip, vip.expire_time, now)
    return vip.expire_time


def revoke_vip_if_expired(user_id: str, now: Optional[datetime] = None) -> bool:
    """
    退款后回收会员：只有到期时间已过才关闭，未到期的已发放权益不中途收回
    :return: 是否关闭了会员
    """
    now = now or datetime.now()
    vip = get_live_vip(user_id)
    if vip is None:
        return False
    if vip.expire_time > now:
        logger.info("vip not expired, kept for %s until %s", user_id, vip.expire_time)
        return False
    if not deactivate_vip(vip.id, now):
        return False
    sync_user_vip(user_id, False, vip.expire_time, now)
    logger.info("vip deactivated for %s", user_id)
    return True


def get_vip_status(user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    查询会员状态：not_vip / active / expired
    """
    now = now or datetime.now()
    vip = get_live_vip(user_id)
    if vip is None:
        res = vip_status(False, None, now)
        res["vipInfo"] = None
        res["expireTime"] = None
        return res
    res = vip_status(vip.is_vip, vip.expire_time, now)
    res["vipInfo"] = vip.to_dict()
    res["expireTime"] = vip.expire_time.isoformat()
    return res
