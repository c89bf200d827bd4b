import pytest
from payrecon import create_app
from payrecon.config.gateway import load_gateway_config
from payrecon.errors import ConfigurationError
from tests.test_utils_gateway import GATEWAY_TEST_CONFIG


def test_loads_complete_config():
    config = load_gateway_config(GATEWAY_TEST_CONFIG)
    assert config.base_url == 'https://sandbox.safaricom.co.ke'
    assert config.is_sandbox
    assert config.timeout_seconds == 30
    assert config.transaction_type == 'CustomerPayBillOnline'
    assert config.c2b_response_type == 'Completed'


def test_production_environment_and_overrides():
    config = load_gateway_config({**GATEWAY_TEST_CONFIG, 'MPESA_ENVIRONMENT': 'Production',
                                  'MPESA_TIMEOUT_SECONDS': '12.5', 'MPESA_TRANSACTION_TYPE': 'CustomerBuyGoodsOnline'})
    assert config.base_url == 'https://api.safaricom.co.ke'
    assert config.timeout_seconds == 12.5
    assert config.transaction_type == 'CustomerBuyGoodsOnline'


def test_missing_keys_are_listed():
    partial = {k: v for k, v in GATEWAY_TEST_CONFIG.items() if k not in ('MPESA_PASSKEY', 'MPESA_CALLBACK_URL')}
    with pytest.raises(ConfigurationError) as exc:
        load_gateway_config(partial)
    assert exc.value.details['missing'] == ['MPESA_PASSKEY', 'MPESA_CALLBACK_URL']
    assert 'MPESA_PASSKEY' in exc.value.message


@pytest.mark.parametrize('overrides', [
    {'MPESA_ENVIRONMENT': 'staging'},
    {'MPESA_TIMEOUT_SECONDS': 'fast'},
    {'MPESA_CONSUMER_KEY': '   '},
])
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        load_gateway_config({**GATEWAY_TEST_CONFIG, **overrides})


def test_app_refuses_to_start_without_credentials():
    with pytest.raises(ConfigurationError):
        create_app({**GATEWAY_TEST_CONFIG, 'MPESA_CONSUMER_SECRET': ''})
