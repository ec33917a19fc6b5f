import hashlib
import hmac

from services.gateways.signatures import (
    cpu_hash,
    hashes_match,
    paytrail_e2_authcode,
    paytrail_e2_return_authcode,
    paytrail_hmac,
    turku_e2_authcode,
    turku_hash,
)


def test_hashes_match_constant_time_compare():
    assert hashes_match("abc", "abc")
    assert not hashes_match("abc", "abd")
    assert not hashes_match("abc", "")
    assert not hashes_match("abc", None)


def test_cpu_hash_appends_secret():
    expected = hashlib.sha256("id1&1&ref&secret".encode()).hexdigest()
    assert cpu_hash(["id1", 1, "ref"], "secret") == expected


def test_paytrail_e2_authcode_secret_first_uppercase():
    expected = hashlib.sha256("secret|13466|a|b".encode()).hexdigest().upper()
    assert paytrail_e2_authcode(["13466", "a", "b"], "secret") == expected


def test_paytrail_e2_return_authcode_is_hmac():
    expected = hmac.new(b"secret", b"o1|p1|1700000000|PAID", hashlib.sha256).hexdigest().upper()
    assert paytrail_e2_return_authcode("o1", "p1", "1700000000", "PAID", "secret") == expected


def test_turku_e2_authcode_secret_last():
    expected = hashlib.sha256("o1|123|secret".encode()).hexdigest().upper()
    assert turku_e2_authcode(["o1", "123"], "secret") == expected


def test_paytrail_hmac_sorts_checkout_keys_and_ignores_others():
    params = {
        "checkout-stamp": "s1",
        "signature": "ignored",
        "checkout-account": "375917",
        "platform-name": "ignored",
    }
    payload = "checkout-account:375917\ncheckout-stamp:s1\n"
    expected = hmac.new(b"SAIPPUAKAUPPIAS", payload.encode(), hashlib.sha256).hexdigest()
    assert paytrail_hmac(params, "", "SAIPPUAKAUPPIAS") == expected


def test_paytrail_hmac_takes_first_value_of_list_headers():
    assert paytrail_hmac({"checkout-a": ["1", "2"]}, "body", "k") == paytrail_hmac({"checkout-a": "1"}, "body", "k")


def test_turku_hash_uses_body_when_present():
    expected = hashlib.sha256('finna2024-01-01T00:00:00Z{"a":1}secret'.encode()).hexdigest()
    assert turku_hash({"checkout-x": "1"}, '{"a":1}', "secret", "2024-01-01T00:00:00Z", "finna") == expected


def test_turku_hash_uses_checkout_params_without_body():
    content = "checkout-a:1\ncheckout-b:2\n"
    expected = hashlib.sha256(f"finnaTS{content}secret".encode()).hexdigest()
    assert turku_hash({"checkout-b": "2", "checkout-a": "1", "X-TURKU-TS": "TS"}, "", "secret", "TS", "finna") == expected
