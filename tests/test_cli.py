from foodai.domain.order import PayStatus
from foodai.infra.models import UserVip
from foodai.infra.repository import transition_order


def test_replay_entitlements_command(app, monthly_order):
    # 模拟回调已把订单置为已支付、但权益发放失败的情况
    transition_order(monthly_order.id, PayStatus.PENDING, {"pay_status": "paid", "status": "paid"})

    result = app.test_cli_runner().invoke(args=["replay-entitlements", "--limit", "10"])
    assert result.exit_code == 0
    assert "replayed 1 order(s)" in result.output
    assert UserVip.query.filter_by(user_id="u1").first().is_vip is True
