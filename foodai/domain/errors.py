class ServiceError(Exception):
    """
    业务异常基类
    code: 返回给小程序端的业务码
    http_status: 对应的 HTTP 状态码
    """
    code = 500
    http_status = 500

    def __init__(self, message: str, code: int = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self):
        return {"success": False, "message": self.message, "code": self.code}


class ValidationError(ServiceError, ValueError):
    code = 400
    http_status = 400


class InvalidStateError(ServiceError):
    code = 4001
    http_status = 400


class AmountMismatchError(ServiceError):
    """
    回调金额与订单金额不一致，属于资金完整性问题
    """
    code = 4002
    http_status = 409

    def __init__(self, order_no: str, order_amount: int, paid_amount):
        super().__init__(f"金额不匹配: 订单{order_amount}分, 支付{paid_amount}分", None)
        self.order_no = order_no
        self.order_amount = order_amount
        self.paid_amount = paid_amount


class SignatureInvalidError(ServiceError):
    code = 401
    http_status = 400
