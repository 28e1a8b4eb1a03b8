from decimal import Decimal

from settings import Settings


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.commission_rate == Decimal("0.03")
    assert settings.flat_shipping_fee == Decimal("150")
    assert settings.allow_verification_re_review is False
    assert settings.declined_payment_methods == frozenset()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("COMMISSION_RATE", "0.05")
    monkeypatch.setenv("LOCAL_STORE_MAX_DOCUMENTS", "500")
    monkeypatch.setenv("ALLOW_VERIFICATION_RE_REVIEW", "true")
    monkeypatch.setenv("DECLINED_PAYMENT_METHODS", "gcash, paymaya")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.commission_rate == Decimal("0.05")
    assert settings.local_store_max_documents == 500
    assert settings.allow_verification_re_review is True
    assert settings.declined_payment_methods == frozenset({"gcash", "paymaya"})
    assert settings.log_level == "DEBUG"


def test_empty_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("LOCAL_STORE_MAX_DOCUMENTS", "")
    monkeypatch.setenv("DATABASE_URL", "")

    settings = Settings(_env_file=None)

    assert settings.local_store_max_documents is None
    assert settings.database_url is None
