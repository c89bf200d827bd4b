import pytest
from payrecon.config.gateway import load_gateway_config
from scripts.register_c2b import build_register_body, parse_args, run
from tests.test_utils_gateway import FakeDaraja, GATEWAY_TEST_CONFIG


@pytest.fixture()
def config():
    return load_gateway_config(GATEWAY_TEST_CONFIG)


def test_register_body_points_at_c2b_routes(config):
    body = build_register_body(config, 'https://pos.example.com/')
    assert body == {
        'ShortCode': '174379',
        'ResponseType': 'Completed',
        'ConfirmationURL': 'https://pos.example.com/payments/c2b/confirm',
        'ValidationURL': 'https://pos.example.com/payments/c2b/validate',
    }


def test_dry_run_does_not_call_gateway(config):
    fake = FakeDaraja()
    result = run(parse_args(['--public-url', 'https://pos.example.com', '--dry-run']), config, client=fake)
    assert 'register' in result
    assert fake.calls == [] and fake.token_calls == 0


def test_register_and_simulate(config):
    fake = FakeDaraja()
    args = parse_args(['--public-url', 'https://pos.example.com', '--simulate', '--amount', '10'])
    result = run(args, config, client=fake)
    assert result['register']['ResponseCode'] == '0'
    (_, sim_body, token), = fake.calls_to('simulate_c2b')
    assert sim_body['Amount'] == 10
    assert sim_body['CommandID'] == 'CustomerPayBillOnline'
    assert token == 'token-1'
    assert fake.token_calls == 1


def test_simulate_is_sandbox_only():
    config = load_gateway_config({**GATEWAY_TEST_CONFIG, 'MPESA_ENVIRONMENT': 'production'})
    args = parse_args(['--public-url', 'https://pos.example.com', '--simulate'])
    with pytest.raises(SystemExit):
        run(args, config, client=FakeDaraja())
