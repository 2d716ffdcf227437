import pytest

from channel_hub.core.crypto import decrypt_json, encrypt_json
from channel_hub.marketplaces.credentials import MarketplaceCredentials, resolve_credentials
from channel_hub.marketplaces.results import ConnectionTestResult
from channel_hub.models.marketplace_account import MarketplaceAccount
from channel_hub.services.connection_tests import connection_health, record_connection_test


def _account(**kw) -> MarketplaceAccount:
    base = dict(id="mka_1", name="store", marketplace_type="shopify", settings={})
    base.update(kw)
    return MarketplaceAccount(**base)


def test_encrypt_roundtrip_hides_plaintext():
    token = encrypt_json({"access_token": "shpat_secret"})
    assert "shpat_secret" not in token
    assert decrypt_json(token) == {"access_token": "shpat_secret"}


def test_resolve_decrypts_bag_and_keeps_settings():
    account = _account(
        credentials_ciphertext=encrypt_json({"store_url": "demo.myshopify.com", "access_token": "t"}),
        settings={"location_id": 99},
    )

    creds = resolve_credentials(account)

    assert creds.type == "shopify"
    assert creds.get("store_url") == "demo.myshopify.com"
    # falls back to non-secret account settings
    assert creds.get("location_id") == 99
    assert creds.validate_required(["store_url", "access_token", "api_version"]) == ["api_version"]


def test_unreadable_ciphertext_behaves_like_empty_bag():
    creds = resolve_credentials(_account(credentials_ciphertext="not-a-fernet-token"))

    assert dict(creds.credentials) == {}
    assert creds.validate_required(["store_url"]) == ["store_url"]


def test_mirakl_operator_comes_from_subtype():
    account = _account(marketplace_type="mirakl", marketplace_subtype="bq", credentials_ciphertext=None)

    creds = resolve_credentials(account)

    assert creds.operator == "bq"
    assert creds.get("operator") == "bq"


def test_blank_values_count_as_missing():
    creds = MarketplaceCredentials(type="ebay", credentials={"client_id": "  ", "client_secret": "s"})
    assert not creds.has_credential("client_id")
    assert creds.validate_required(["client_id", "client_secret"]) == ["client_id"]


def test_credentials_are_read_only_and_masked():
    creds = MarketplaceCredentials(type="mirakl", credentials={"api_key": "abcdef123", "api_url": "https://x"})

    with pytest.raises(TypeError):
        creds.credentials["api_key"] = "other"

    masked = creds.masked()
    assert masked["api_key"] == "abcd****"
    assert masked["api_url"] == "https://x"

    updated = creds.with_overrides(api_url="https://y")
    assert updated.get("api_url") == "https://y"
    assert creds.get("api_url") == "https://x"


def test_ciphertext_holding_a_list_behaves_like_empty_bag():
    account = _account(marketplace_type="mirakl", marketplace_subtype="bq", credentials_ciphertext=encrypt_json(["k"]))

    creds = resolve_credentials(account)

    assert creds.operator == "bq"
    assert dict(creds.credentials) == {"operator": "bq"}
    assert creds.validate_required(["api_url", "api_key"]) == ["api_url", "api_key"]


def test_connection_history_is_bounded_and_can_be_disabled():
    account = _account()
    for ok in (True, False, True):
        record_connection_test(account, ConnectionTestResult(success=ok, message="ok" if ok else "down"), history_limit=2)

    assert [h["success"] for h in account.connection_test_result["history"]] == [False, True]

    record_connection_test(account, ConnectionTestResult(success=False, message="down"), history_limit=0)

    assert account.connection_test_result["history"] == []
    assert account.connection_test_result["current"]["status"] == "failing"
    health = connection_health(account)
    assert health["status"] == "failing"
    assert health["tests"] == 0
    assert health["success_rate"] is None
