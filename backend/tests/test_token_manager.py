from datetime import timedelta
import pytest
from payrecon.errors import AuthenticationError, NetworkTimeoutError
from payrecon.services.token import TokenManager


def test_token_is_cached_until_expiry(gateway, clock):
    tokens = TokenManager(gateway, clock)
    first = tokens.get_token()
    second = tokens.get_token()
    assert first.value == second.value == 'token-1'
    assert gateway.token_calls == 1


def test_token_expires_one_minute_early(gateway, clock):
    tokens = TokenManager(gateway, clock)
    first = tokens.get_token()
    assert first.expires_at == clock.now() + timedelta(seconds=3599 - 60)
    clock.advance(seconds=3538)
    assert tokens.get_token().value == 'token-1'
    clock.advance(seconds=1)
    assert tokens.get_token().value == 'token-2'
    assert gateway.token_calls == 2


def test_missing_expires_in_uses_default_lifetime(gateway, clock):
    gateway.queue('fetch_token', {'access_token': 'abc'})
    token = TokenManager(gateway, clock).get_token()
    assert token.value == 'abc'
    assert token.expires_at == clock.now() + timedelta(seconds=3539)


def test_invalidate_forces_refresh(gateway, clock):
    tokens = TokenManager(gateway, clock)
    tokens.get_token()
    tokens.invalidate()
    assert tokens.get_token().value == 'token-2'


def test_auth_failures_propagate_without_caching(gateway, clock):
    gateway.queue('fetch_token', AuthenticationError('M-Pesa authentication failed: bad credentials'),
                  NetworkTimeoutError('M-Pesa authentication timed out after 30s'))
    tokens = TokenManager(gateway, clock)
    with pytest.raises(AuthenticationError):
        tokens.get_token()
    with pytest.raises(NetworkTimeoutError):
        tokens.get_token()
    assert tokens.get_token().value == 'token-3'


def test_non_numeric_expires_in_is_rejected(gateway, clock):
    gateway.queue('fetch_token', {'access_token': 'abc', 'expires_in': 'soon'})
    with pytest.raises(AuthenticationError):
        TokenManager(gateway, clock).get_token()
