from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Column, String, Integer, JSON, Boolean, DateTime, Index
from sqlalchemy.orm import DeclarativeBase

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)


class Order(db.Model):
    __tablename__ = 'orders'
    id = Column(String(32), primary_key=True) # UUID
    order_no = Column(String(32), nullable=False) # FOODAI + 日期 + 随机串
    user_id = Column(String(64), nullable=False)
    openid = Column(String(64), default="")

    # 商品信息（下单时快照）
    plan_type = Column(String(16), nullable=False)
    plan_name = Column(String(64), default="")
    amount = Column(Integer, nullable=False) # 分
    description = Column(String(256), default="")
    duration = Column(Integer, default=0) # 天
    features = Column(JSON, default=list)

    # 支付信息
    pay_data = Column(JSON, default=dict)
    pay_status = Column(String(16), default="pending") # pending, paid, refunded, cancelled
    pay_time = Column(DateTime, nullable=True)
    transaction_id = Column(String(64), nullable=True)

    # 退款信息
    refund_id = Column(String(64), nullable=True)
    refund_fee = Column(Integer, nullable=True)
    refund_time = Column(DateTime, nullable=True)

    # 订单状态
    status = Column(String(16), default="created") # created, paid, completed, cancelled, refunded
    # 会员权益是否已发放，未发放的已支付订单由 replay-entitlements 补发
    entitlement_granted = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    create_time = Column(DateTime, nullable=False)
    update_time = Column(DateTime, nullable=False)
    expire_time = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('uix_orders_order_no', 'order_no', unique=True),
        Index('ix_orders_user_status', 'user_id', 'status'),
        Index('ix_orders_create_time', 'create_time'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "order_no": self.order_no,
            "user_id": self.user_id,
            "plan_type": self.plan_type,
            "plan_name": self.plan_name,
            "amount": self.amount,
            "description": self.description,
            "duration": self.duration,
            "features": self.features or [],
            "pay_data": self.pay_data or {},
            "pay_status": self.pay_status,
            "pay_time": _iso(self.pay_time),
            "transaction_id": self.transaction_id,
            "refund_id": self.refund_id,
            "refund_fee": self.refund_fee,
            "refund_time": _iso(self.refund_time),
            "status": self.status,
            "create_time": _iso(self.create_time),
            "update_time": _iso(self.update_time),
            "expire_time": _iso(self.expire_time),
        }


class UserVip(db.Model):
    __tablename__ = 'user_vip'
    id = Column(Integer, primary_key=True, autoincrement=True)
    # 每个用户只有一条会员记录
    user_id = Column(String(64), nullable=False, unique=True)
    plan_type = Column(String(16), nullable=False)
    is_vip = Column(Boolean, default=True, nullable=False)
    start_time = Column(DateTime, nullable=False)
    expire_time = Column(DateTime, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    create_time = Column(DateTime, nullable=False)
    update_time = Column(DateTime, nullable=False)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "plan_type": self.plan_type,
            "is_vip": self.is_vip,
            "start_time": _iso(self.start_time),
            "expire_time": _iso(self.expire_time),
        }


class User(db.Model):
    """
    用户资料表，只维护会员状态的冗余字段，便于快速读取
    """
    __tablename__ = 'users'
    id = Column(String(64), primary_key=True) # openid
    is_vip = Column(Boolean, default=False, nullable=False)
    vip_expire_time = Column(DateTime, nullable=True)
    create_time = Column(DateTime, nullable=False)
    update_time = Column(DateTime, nullable=False)


def _iso(value):
    return value.isoformat() if value else None
