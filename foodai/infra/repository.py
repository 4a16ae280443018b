from typing import Dict, Any, List, Optional, Tuple
from datetime import datetime
import uuid

from .models import db, Order, UserVip, User
from ..domain.order import PayStatus, OPEN_ORDER_STATUSES

# Repository 层：所有对 orders / user_vip / users 的读写都从这里走

# --- Order ---

def insert_order(fields: Dict[str, Any]) -> Order:
    """
    新建订单，id 由存储层分配
    """
    o = Order(id=uuid.uuid4().hex, **fields)
    db.session.add(o)
    db.session.commit()
    return o


def find_latest_open_order(user_id: str) -> Optional[Order]:
    """
    查询用户最近一笔未完成订单（只取最新一条）
    """
    return (
        Order.query
        .filter(Order.user_id == user_id)
        .filter(Order.status.in_(OPEN_ORDER_STATUSES))
        .filter(Order.is_deleted.is_(False))
        .order_by(Order.create_time.desc())
        .first()
    )


def get_user_order(user_id: str, order_id: Optional[str] = None, order_no: Optional[str] = None) -> Optional[Order]:
    q = Order.query.filter_by(user_id=user_id, is_deleted=False)
    if order_id:
        q = q.filter_by(id=order_id)
    elif order_no:
        q = q.filter_by(order_no=order_no)
    else:
        return None
    return q.first()


def list_user_orders(user_id: str, page: int, page_size: int, status: Optional[str] = None) -> Tuple[List[Order], int]:
    q = Order.query.filter_by(user_id=user_id, is_deleted=False)
    if status:
        q = q.filter_by(status=status)
    total = q.count()
    items = (
        q.order_by(Order.create_time.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def get_order_by_no(order_no: str) -> Optional[Order]:
    return Order.query.filter_by(order_no=order_no, is_deleted=False).first()


def transition_order(order_id: str, expected: PayStatus, values: Dict[str, Any]) -> bool:
    """
    条件更新：只有当前 pay_status 仍等于 expected 时才写入
    两个并发回调同时通过读检查时，只有一个能更新成功
    :return: 是否更新成功
    """
    updated = (
        Order.query
        .filter_by(id=order_id, pay_status=expected.value, is_deleted=False)
        .update(values, synchronize_session=False)
    )
    db.session.commit()
    # 条件更新绕过了 session，这里让已加载的对象过期以便下次读取最新值
    db.session.expire_all()
    return updated == 1


def mark_entitlement_granted(order_id: str) -> None:
    Order.query.filter_by(id=order_id).update(
        {"entitlement_granted": True}, synchronize_session=False)
    db.session.commit()


def list_ungranted_paid_orders(limit: int = 500) -> List[Order]:
    return (
        Order.query
        .filter_by(pay_status=PayStatus.PAID.value, entitlement_granted=False, is_deleted=False)
        .order_by(Order.pay_time.asc())
        .limit(limit)
        .all()
    )


def find_paid_order(order_id: str, transaction_id: str) -> Optional[Order]:
    return Order.query.filter_by(
        id=order_id,
        transaction_id=transaction_id,
        pay_status=PayStatus.PAID.value,
        is_deleted=False,
    ).first()


# --- VIP ---

def get_live_vip(user_id: str) -> Optional[UserVip]:
    return UserVip.query.filter_by(user_id=user_id, is_deleted=False).first()


def insert_vip(user_id: str, plan_type: str, expire_time: datetime, now: datetime) -> UserVip:
    vip = UserVip(
        user_id=user_id,
        plan_type=plan_type,
        is_vip=True,
        start_time=now,
        expire_time=expire_time,
        create_time=now,
        update_time=now,
    )
    db.session.add(vip)
    db.session.commit()
    return vip


def extend_vip(vip_id: int, plan_type: str, expire_time: datetime, now: datetime) -> bool:
    """
    条件更新：只有新的到期时间晚于当前记录时才写入，保证到期时间只增不减
    """
    updated = (
        UserVip.query
        .filter(UserVip.id == vip_id)
        .filter(UserVip.expire_time < expire_time)
        .update({
            "plan_type": plan_type,
            "is_vip": True,
            "start_time": now,
            "expire_time": expire_time,
            "update_time": now,
        }, synchronize_session=False)
    )
    db.session.commit()
    db.session.expire_all()
    return updated == 1


def deactivate_vip(vip_id: int, now: datetime) -> bool:
    """
    条件更新：只有记录仍处于已到期状态时才关闭会员，避免覆盖并发续费
    """
    updated = (
        UserVip.query
        .filter(UserVip.id == vip_id)
        .filter(UserVip.expire_time <= now)
        .update({"is_vip": False, "update_time": now}, synchronize_session=False)
    )
    db.session.commit()
    db.session.expire_all()
    return updated == 1


# --- User ---

def sync_user_vip(user_id: str, is_vip: bool, expire_time: Optional[datetime], now: datetime) -> None:
    """
    同步用户表上的会员冗余字段，用户记录不存在时补建
    """
    u = User.query.filter_by(id=user_id).first()
    if u is None:
        u = User(id=user_id, create_time=now)
        db.session.add(u)
    u.is_vip = is_vip
    u.vip_expire_time = expire_time
    u.update_time = now
    db.session.commit()
