# foodai/cli.py
import click
from flask.cli import with_appcontext
from .services.payment_service import replay_entitlements


@click.command("replay-entitlements")
@click.option("--limit", default=500, show_default=True, help="单次最多处理的订单数")
@with_appcontext
def replay_entitlements_cmd(limit):
    """为已支付但会员权益未发放的订单补发会员。"""
    count = replay_entitlements(limit)
    click.echo(f"replayed {count} order(s)")


def register_cli(app):
    app.cli.add_command(replay_entitlements_cmd)
