from decimal import Decimal

import pytest
from unittest.mock import MagicMock

from storefront.payments import taxes
from storefront.payments.pricing import PricingPolicy

def _client_returning(rows):
    client = MagicMock()
    query = client.table.return_value.select.return_value
    query.eq.return_value = query
    query.limit.return_value.execute.return_value = MagicMock(data=rows)
    return client

def test_state_rate_is_read_as_percentage(monkeypatch):
    client = _client_returning([{"rate": 8.25}])
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: client)

    assert taxes.get_state_tax_rate(" tx ") == Decimal("0.0825")
    client.table.assert_called_once_with("tax_rates")
    query = client.table.return_value.select.return_value
    query.eq.assert_any_call("country", "US")
    query.eq.assert_any_call("state", "TX")
    query.eq.assert_any_call("is_active", True)

def test_unknown_state_or_bad_rate_returns_none(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: _client_returning([]))
    assert taxes.get_state_tax_rate("ZZ") is None
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: _client_returning([{"rate": "n/a"}]))
    assert taxes.get_state_tax_rate("TX") is None
    assert taxes.get_state_tax_rate("  ") is None

def test_lookup_errors_are_wrapped(monkeypatch):
    client = MagicMock()
    client.table.side_effect = RuntimeError("network")
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: client)
    with pytest.raises(taxes.TaxRateUnavailableError):
        taxes.get_state_tax_rate("CA")

def test_policy_with_state_rate():
    policy = PricingPolicy(tax_rate=Decimal("0.08"))
    assert policy.with_tax_rate(None) is policy
    assert policy.with_tax_rate(Decimal("0.0825")).tax_for(10000) == 825
    assert policy.tax_for(10000) == 800
