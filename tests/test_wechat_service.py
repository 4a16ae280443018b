from foodai.services.wechat_service import build_sign, verify_sign, parse_xml, to_xml, build_jsapi_params

KEY = "192006250b4c09247ec02edce69f6a2d"


def test_build_sign_matches_documented_example():
    # 微信支付签名算法文档中的示例
    params = {
        "appid": "wxd930ea5d5a258f4f",
        "mch_id": "10000100",
        "device_info": "1000",
        "body": "test",
        "nonce_str": "ibuaiVcKdpRxkhJA",
    }
    assert build_sign(params, KEY) == "9A0A8659F005D6984697E2CA0A9CF3B7"


def test_verify_sign_accepts_lowercase_signature():
    params = {"out_trade_no": "FOODAI20240101ABC", "total_fee": "990"}
    sign = build_sign(params, KEY)
    assert verify_sign(dict(params, sign=sign.lower()), sign.lower(), KEY)


def test_verify_sign_rejects_tampered_payload():
    params = {"out_trade_no": "FOODAI20240101ABC", "total_fee": "990"}
    sign = build_sign(params, KEY)
    tampered = dict(params, total_fee="1", sign=sign)
    assert not verify_sign(tampered, sign, KEY)


def test_verify_sign_rejects_missing_signature_or_key():
    params = {"out_trade_no": "FOODAI20240101ABC"}
    assert not verify_sign(params, None, KEY)
    assert not verify_sign(params, "", KEY)
    assert not verify_sign(params, build_sign(params, KEY), "")


def test_verify_sign_treats_errors_as_failure():
    class Broken:
        def __str__(self):
            raise RuntimeError("boom")

    assert not verify_sign({"total_fee": Broken()}, "ABC", KEY)


def test_xml_codec():
    body = to_xml({"return_code": "SUCCESS", "return_msg": "OK"})
    assert body == "<xml><return_code><![CDATA[SUCCESS]]></return_code><return_msg><![CDATA[OK]]></return_msg></xml>"
    assert parse_xml(body.encode("utf-8")) == {"return_code": "SUCCESS", "return_msg": "OK"}


def test_jsapi_params_are_signed():
    params = build_jsapi_params("wx-test-appid", "wx201410272009395522657a690389285100", KEY)
    assert params["package"] == "prepay_id=wx201410272009395522657a690389285100"
    unsigned = {k: v for k, v in params.items() if k != "paySign"}
    assert params["paySign"] == build_sign(unsigned, KEY)
