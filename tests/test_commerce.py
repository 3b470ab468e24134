from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from brandstore.commerce import CommerceClient, oauth1_header
from brandstore.errors import ConfigError, StateError


@pytest.fixture
def client(settings, store, session):
    return CommerceClient(settings, store, session=session)


def test_oauth1_header_is_stable_for_fixed_nonce_and_time():
    args = ("GET", "https://shop.example.com/rest/all/V1/orders?searchCriteria[pageSize]=2",
            "ck", "cs", "at", "ats")
    first = oauth1_header(*args, nonce="n", timestamp=1700000000)
    assert first == oauth1_header(*args, nonce="n", timestamp=1700000000)
    assert first != oauth1_header(*args, nonce="other", timestamp=1700000000)
    assert first.startswith("OAuth ")
    assert 'oauth_signature_method="HMAC-SHA256"' in first
    assert 'oauth_consumer_key="ck"' in first


def test_exactly_one_auth_mode(settings, store):
    with pytest.raises(ConfigError):
        CommerceClient(settings.model_copy(update={"oauth_client_id": "ims"}), store)
    with pytest.raises(ConfigError):
        CommerceClient(settings.model_copy(update={"commerce_consumer_key": ""}), store)
    with pytest.raises(ConfigError):
        CommerceClient(settings.model_copy(update={"commerce_base_url": ""}), store)


def test_success(client, session, make_response):
    session.request.return_value = make_response(200, {"items": [{"id": 1}]})
    result = client.get_customer("ada@example.com")
    assert result.success is True
    assert result.message == {"items": [{"id": 1}]}
    method, url = session.request.call_args.args
    assert method == "GET"
    assert url.startswith("https://shop.example.com/rest/all/V1/customers/search?")
    assert session.request.call_args.kwargs["headers"]["Authorization"].startswith("OAuth ")


def test_http_error_keeps_upstream_status(client, session, make_response):
    session.request.return_value = make_response(404, {"message": "No such entity with %fieldName = %fieldValue"})
    result = client.get_customer_group(99)
    assert (result.success, result.status_code) == (False, 404)
    assert result.message.startswith("No such entity")


def test_transport_error_is_a_500_result(client, session):
    session.request.side_effect = requests.ConnectionError("refused")
    result = client.invoice_order(5)
    assert (result.success, result.status_code) == (False, 500)
    assert result.message.startswith("Unexpected error, check logs.")


def test_open_orders_query(client, session, make_response):
    session.request.return_value = make_response(200, {"items": []})
    client.get_orders(2)
    query = parse_qs(urlsplit(session.request.call_args.args[1]).query)
    assert query["searchCriteria[filter_groups][0][filters][0][field]"] == ["status"]
    assert query["searchCriteria[filter_groups][1][filters][0][field]"] == ["state"]
    assert query["searchCriteria[filter_groups][0][filters][0][condition_type]"] == ["nin"]
    assert query["searchCriteria[filter_groups][0][filters][0][value]"] == ["complete,canceled,closed"]
    assert query["searchCriteria[pageSize]"] == ["2"]


def test_ims_token_is_cached(settings, store, session, make_response):
    ims = settings.model_copy(update={"commerce_consumer_key": "", "oauth_client_id": "client",
                                      "oauth_org_id": "org@AdobeOrg"})
    session.post.return_value = make_response(200, {"access_token": "ims-token", "expires_in": 86400})
    session.request.return_value = make_response(200, {})
    client = CommerceClient(ims, store, session=session)

    client.get_cart("abc")
    client.get_cart("abc")

    session.post.assert_called_once()
    headers = session.request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer ims-token"
    assert headers["x-ims-org-id"] == "org@AdobeOrg"


def test_ims_token_cache_write_failure_still_calls_commerce(settings, store, session, make_response):
    ims = settings.model_copy(update={"commerce_consumer_key": "", "oauth_client_id": "client",
                                      "oauth_org_id": "org@AdobeOrg"})
    session.post.return_value = make_response(200, {"access_token": "ims-token", "expires_in": 86400})
    session.request.return_value = make_response(200, {"id": 1})
    client = CommerceClient(ims, store, session=session)

    with patch.object(store, "put", side_effect=StateError("disk full")):
        result = client.get_cart(1)

    assert result.success is True
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer ims-token"
