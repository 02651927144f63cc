import pytest
import requests

from fakes import FakeResponse, FakeSession
from storefront.services.vat import VatResolver, check_vat_format, clean_vat_number


def _resolver(handler):
    session = FakeSession(handler)
    return VatResolver("DE", "https://vies.test/rest-api", session=session), session


def _fail(*_):
    raise AssertionError("VIES must not be called")


def test_home_country_always_taxable():
    resolver, session = _resolver(_fail)
    decision = resolver.resolve("DE", "DE123456789")
    assert decision.taxable is True and decision.used_fallback is False
    assert session.calls == []


def test_non_eu_is_out_of_scope():
    resolver, _ = _resolver(_fail)
    decision = resolver.resolve("US", "123")
    assert decision.taxable is None
    assert "only available for EU" in decision.error


def test_eu_without_number_is_taxable():
    resolver, _ = _resolver(_fail)
    assert resolver.resolve("FR").taxable is True


def test_vies_valid_number_is_reverse_charge():
    body = {"isValid": True, "name": "ACME SARL", "address": "---"}
    resolver, session = _resolver(lambda m, url, kw: FakeResponse(200, body))
    decision = resolver.resolve("fr", "FR 12 345678901")

    assert decision.taxable is False and decision.valid is True
    assert decision.validated_name == "ACME SARL" and decision.address is None
    assert decision.vat_number == "FR12345678901"
    assert session.calls[0][1] == "https://vies.test/rest-api/ms/FR/vat/12345678901"


def test_greece_uses_el_prefix():
    resolver, session = _resolver(lambda m, url, kw: FakeResponse(200, {"isValid": True}))
    resolver.resolve("GR", "EL123456789")
    assert session.calls[0][1].endswith("/ms/EL/vat/123456789")


def test_vies_invalid_number_is_taxable():
    body = {"isValid": False, "userError": "INVALID"}
    resolver, _ = _resolver(lambda m, url, kw: FakeResponse(200, body))
    decision = resolver.resolve("NL", "NL123456789B01")
    assert decision.taxable is True and decision.valid is False
    assert decision.used_fallback is False and decision.error == "INVALID"


@pytest.mark.parametrize("number", ["FR12345678901", "FR1234", "FRXX123"])
def test_vies_503_matches_static_format_check(number):
    resolver, _ = _resolver(lambda m, url, kw: FakeResponse(503, {"actionSucceed": False}))
    decision = resolver.resolve("FR", number)

    assert decision.used_fallback is True
    static_ok = check_vat_format("FR", clean_vat_number("FR", number)) is None
    assert decision.valid is static_ok
    assert decision.taxable is (not static_ok)
    assert decision.service_unavailable is (not static_ok)


def test_network_error_falls_back():
    def boom(*_):
        raise requests.ConnectionError("connection refused")

    resolver, _ = _resolver(boom)
    decision = resolver.resolve("AT", "ATU12345678")
    assert decision.used_fallback is True and decision.taxable is False


def test_vies_client_error_is_not_a_fallback():
    resolver, _ = _resolver(lambda m, url, kw: FakeResponse(400, {"errorWrappers": []}))
    decision = resolver.resolve("IT", "IT12345678901")
    assert decision.used_fallback is False
    assert decision.taxable is True and decision.error == "VAT validation failed"


def test_validate_endpoint_reports_fallback(client, vies):
    # La sesion por defecto del fixture responde 503
    r = client.post("/api/vat/validate", json={"vatNumber": "BE0123456789", "countryCode": "BE"})
    assert r.status_code == 200
    js = r.json()
    assert js["valid"] is True and js["fallbackValidation"] is True
    assert js["taxable"] is False and js["serviceUnavailable"] is False


def test_validate_endpoint_requires_country(client):
    r = client.post("/api/vat/validate", json={"vatNumber": "123", "countryCode": " "})
    assert r.status_code == 400
    assert r.json()["detail"] == "COUNTRY_REQUIRED"
