from shared.redaction import REDACTED, mask_sensitive_fields, mask_value, redact_config


def test_redact_config_replaces_secret_keys():
    redacted = redact_config({
        "app_key": "public",
        "app_secret": "s3cret",
        "Client-Secret": "abc",
        "merchant_password": "pw",
        "custom_token": "t",
        "sandbox": True,
    })
    assert redacted == {
        "app_key": "public",
        "app_secret": REDACTED,
        "Client-Secret": REDACTED,
        "merchant_password": REDACTED,
        "custom_token": REDACTED,
        "sandbox": True,
    }


def test_redact_config_keeps_missing_values_visible():
    redacted = redact_config({"api_key": None, "secret_key": ""})
    assert redacted == {"api_key": None, "secret_key": ""}


def test_redact_config_recurses_and_copies():
    original = {"bkash": {"password": "pw", "username": "merchant"}}
    redacted = redact_config(original)
    assert redacted["bkash"] == {"password": REDACTED, "username": "merchant"}
    assert original["bkash"]["password"] == "pw"


def test_mask_value():
    assert mask_value("01712345678") == "01*********"
    assert mask_value("1234") == "****"
    assert mask_value(12345) == "12***"


def test_mask_sensitive_fields():
    masked = mask_sensitive_fields({
        "phone_number": "01712345678",
        "customer": {"email": "someone@example.test", "name": "Rahim"},
        "access_token": "abcdefgh",
        "hash_secret": "xyz",
        "otp": None,
    })
    assert masked["phone_number"] == "01*********"
    assert masked["customer"]["email"].startswith("so")
    assert set(masked["customer"]["email"][2:]) == {"*"}
    assert masked["customer"]["name"] == "Rahim"
    assert masked["access_token"] == "ab******"
    assert masked["hash_secret"] == REDACTED
    assert masked["otp"] is None
