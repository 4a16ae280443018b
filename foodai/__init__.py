import logging
from flask import Flask
from flask_cors import CORS
from .infra.models import db
from .infra.context import user_context_middleware
import config


def create_app(test_config=None):
    app = Flask(__name__)
    CORS(app) # 开启全局跨域支持

    # 默认配置，可被 test_config 覆盖
    app.config.from_mapping(
        SECRET_KEY='dev',
        SQLALCHEMY_DATABASE_URI='mysql+pymysql://{}:{}@{}/{}'.format(
            config.username, config.password, config.db_address, config.db_name),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        WX_APPID=config.WX_APPID,
        WX_MCH_ID=config.WX_MCH_ID,
        WX_PAY_API_KEY=config.WX_PAY_API_KEY,
        WX_PAY_MODE=config.WX_PAY_MODE,
        WX_PAY_NOTIFY_URL=config.WX_PAY_NOTIFY_URL,
        WX_NOTIFY_MODE=config.WX_NOTIFY_MODE,
        WX_TEMPLATE_PAY_SUCCESS=config.WX_TEMPLATE_PAY_SUCCESS,
        WX_TEMPLATE_REFUND_SUCCESS=config.WX_TEMPLATE_REFUND_SUCCESS,
        EXTERNAL_TIMEOUT_SECONDS=config.EXTERNAL_TIMEOUT_SECONDS,
        DUPLICATE_ORDER_WINDOW_MINUTES=config.DUPLICATE_ORDER_WINDOW_MINUTES,
        LOG_LEVEL=config.LOG_LEVEL,
    )

    if test_config:
        app.config.update(test_config)

    # 所有数据库调用都必须有超时上限
    timeout = app.config["EXTERNAL_TIMEOUT_SECONDS"]
    engine_options = {"pool_pre_ping": True}
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("mysql"):
        engine_options.update(
            pool_timeout=timeout,
            pool_recycle=280,
            connect_args={
                "connect_timeout": int(timeout),
                "read_timeout": int(timeout * 2),
                "write_timeout": int(timeout * 2),
            },
        )
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", engine_options)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    db.init_app(app)

    # 注册用户上下文中间件
    app.before_request(user_context_middleware)

    # 注册蓝图
    from .api.order import order_bp
    from .api.payment import payment_bp
    from .api.vip import vip_bp

    app.register_blueprint(order_bp, url_prefix='/api')
    app.register_blueprint(payment_bp, url_prefix='/api')
    app.register_blueprint(vip_bp, url_prefix='/api')

    from .cli import register_cli
    register_cli(app)

    # 初始化数据库（开发环境方便起见）
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning("DB init failed (maybe connection error): %s", e)

    return app
