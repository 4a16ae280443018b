import os

# 数据库连接（云托管环境通过环境变量注入）
username = os.getenv("MYSQL_USERNAME", "root")
password = os.getenv("MYSQL_PASSWORD", "")
db_address = os.getenv("MYSQL_ADDRESS", "127.0.0.1:3306")
db_name = os.getenv("MYSQL_DATABASE", "foodai_db")

# 微信支付 (v2, MD5 签名)
WX_APPID = os.getenv("WX_APPID", "")
WX_MCH_ID = os.getenv("WX_MCH_ID", "")
WX_PAY_API_KEY = os.getenv("WX_PAY_API_KEY", "")
WX_PAY_MODE = os.getenv("WX_PAY_MODE", "MOCK").upper()
WX_PAY_NOTIFY_URL = os.getenv("WX_PAY_NOTIFY_URL", "")

# 订阅消息
WX_NOTIFY_MODE = os.getenv("WX_NOTIFY_MODE", "LOG").upper()
WX_TEMPLATE_PAY_SUCCESS = os.getenv("WX_TEMPLATE_PAY_SUCCESS", "")
WX_TEMPLATE_REFUND_SUCCESS = os.getenv("WX_TEMPLATE_REFUND_SUCCESS", "")

# 外部调用超时（秒）
EXTERNAL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "5"))

# 重复下单拦截窗口（分钟）
DUPLICATE_ORDER_WINDOW_MINUTES = int(os.getenv("DUPLICATE_ORDER_WINDOW_MINUTES", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
