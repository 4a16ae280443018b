from flask import g, request


def get_current_user_id():
    """
    获取当前请求上下文的 user_id（即小程序 openid）
    """
    return g.get('user_id')


def get_current_openid():
    return g.get('openid')


def user_context_middleware():
    """
    Flask before_request 钩子
    解析 X-WX-OPENID / X-User-ID Header
    """
    # 应用上下文可能被多个请求复用，先清空上一次的身份
    g.user_id = None
    g.openid = None

    # 支付回调来自微信服务器，没有用户身份
    if request.path.startswith('/api/pay/notify'):
        return

    # 云托管会自动注入 X-WX-OPENID
    openid = request.headers.get('X-WX-OPENID')
    user_id = openid or request.headers.get('X-User-ID')

    # 兼容：方便调试，也允许 query string
    if not user_id:
        user_id = request.args.get('userId') or request.args.get('user_id')

    # 暂不强制拦截，由 Service 层决定是否需要 user_id
    g.user_id = user_id or None
    g.openid = openid or None
