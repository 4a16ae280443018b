import hashlib
import hmac
import logging
import time
import uuid
import xml.etree.ElementTree as ET
from typing import Dict, Any, Optional
from urllib import request as urlreq

logger = logging.getLogger(__name__)

UNIFIED_ORDER_URL = "https://api.mch.weixin.qq.com/pay/unifiedorder"
SIGN_FIELD = "sign"


def build_sign(params: Dict[str, Any], api_key: str) -> str:
    """
    微信支付 v2 MD5 签名
    除 sign 外所有字段按 key 字典序拼接为 k=v&k=v，末尾追加 &key=API密钥，MD5 后转大写
    """
    keys = sorted(k for k in params.keys() if k != SIGN_FIELD)
    sign_str = "&".join(f"{k}={params[k]}" for k in keys) + f"&key={api_key}"
    return hashlib.md5(sign_str.encode("utf-8")).hexdigest().upper()


def verify_sign(payload: Dict[str, Any], provided_sign: Optional[str], api_key: str) -> bool:
    """
    校验回调签名，纯函数
    签名缺失、密钥未配置或计算过程中出现任何异常都视为校验失败
    """
    if not provided_sign or not api_key:
        return False
    try:
        expected = build_sign(payload, api_key)
        return hmac.compare_digest(expected, str(provided_sign).upper())
    except Exception as e:
        logger.warning("verify sign failed: %s", e)
        return False


def parse_xml(body: bytes) -> Dict[str, str]:
    """
    解析微信回调 XML（单层 <xml><k>v</k></xml>）
    """
    root = ET.fromstring(body)
    return {child.tag: (child.text or "") for child in root}


def to_xml(data: Dict[str, Any]) -> str:
    parts = ["<xml>"]
    for k, v in data.items():
        parts.append(f"<{k}><![CDATA[{v}]]></{k}>")
    parts.append("</xml>")
    return "".join(parts)


def jsapi_unified_order(appid: str, mchid: str, api_key: str, openid: str, description: str,
                        out_trade_no: str, amount_cents: int, notify_url: str,
                        mode: str = "MOCK", timeout: float = 5) -> dict:
    """
    统一下单，返回 prepay_id
    MOCK 模式直接生成 prepay_id，REAL 模式调用微信支付接口
    """
    if mode != "REAL":
        return {"prepay_id": f"wx{uuid.uuid4().hex}"}

    params = {
        "appid": appid,
        "mch_id": mchid,
        "nonce_str": uuid.uuid4().hex,
        "body": description,
        "out_trade_no": out_trade_no,
        "total_fee": amount_cents,
        "spbill_create_ip": "127.0.0.1",
        "notify_url": notify_url,
        "trade_type": "JSAPI",
        "openid": openid,
    }
    params[SIGN_FIELD] = build_sign(params, api_key)
    req = urlreq.Request(
        UNIFIED_ORDER_URL,
        data=to_xml(params).encode("utf-8"),
        headers={"Content-Type": "text/xml"},
    )
    resp = urlreq.urlopen(req, timeout=timeout)
    data = parse_xml(resp.read())
    if data.get("return_code") != "SUCCESS" or data.get("result_code") != "SUCCESS":
        logger.error("unified order failed: %s %s", out_trade_no, data)
        return {"error": "wechat_pay_error", "detail": data.get("err_code_des") or data.get("return_msg")}
    return {"prepay_id": data.get("prepay_id", "")}


def build_jsapi_params(appid: str, prepay_id: str, api_key: str) -> dict:
    """
    小程序 wx.requestPayment 所需参数
    """
    params = {
        "appId": appid,
        "timeStamp": str(int(time.time())),
        "nonceStr": uuid.uuid4().hex[:16],
        "package": "prepay_id=" + prepay_id,
        "signType": "MD5",
    }
    params["paySign"] = build_sign(params, api_key)
    return params
