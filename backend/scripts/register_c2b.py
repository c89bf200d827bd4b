#!/usr/bin/env python
"""Register the C2B validation/confirmation URLs for the configured short code.

Usage:
    python backend/scripts/register_c2b.py --public-url https://pos.example.com
    python backend/scripts/register_c2b.py --public-url https://abc.ngrok.io --simulate --amount 10
    python backend/scripts/register_c2b.py --public-url https://pos.example.com --dry-run

Gateway credentials come from the same MPESA_* environment variables the app reads.
Registration must be redone whenever the public URL changes.
"""
from __future__ import annotations
import os, sys, argparse, json
from dotenv import load_dotenv

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from payrecon.config.gateway import GatewayConfig, load_gateway_config  # type: ignore
from payrecon.errors import PaymentError
from payrecon.services.gateway import DarajaClient
from payrecon.services.token import TokenManager
from payrecon.utils.clock import SystemClock

SANDBOX_TEST_MSISDN = '254708374149'


def build_register_body(config: GatewayConfig, public_url: str) -> dict:
    base = public_url.rstrip('/')
    return {
        'ShortCode': config.short_code,
        'ResponseType': config.c2b_response_type,
        'ConfirmationURL': f'{base}/payments/c2b/confirm',
        'ValidationURL': f'{base}/payments/c2b/validate',
    }


def build_simulate_body(config: GatewayConfig, amount: int, msisdn: str, reference: str) -> dict:
    return {
        'ShortCode': config.short_code,
        'CommandID': 'CustomerBuyGoodsOnline' if config.transaction_type == 'CustomerBuyGoodsOnline' else 'CustomerPayBillOnline',
        'Amount': amount,
        'Msisdn': msisdn,
        'BillRefNumber': reference,
    }


def run(args, config: GatewayConfig, client=None) -> dict:
    client = client or DarajaClient(config)
    body = build_register_body(config, args.public_url)
    if args.dry_run:
        return {'register': body}
    tokens = TokenManager(client, SystemClock())
    result = {'register': client.register_c2b_urls(body, tokens.get_token().value)}
    if args.simulate:
        if not config.is_sandbox:
            raise SystemExit('--simulate is only available against the sandbox')
        sim_body = build_simulate_body(config, args.amount, args.msisdn, args.reference)
        result['simulate'] = client.simulate_c2b(sim_body, tokens.get_token().value)
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Register M-Pesa C2B URLs')
    parser.add_argument('--public-url', required=True, help='Public base URL the gateway can reach')
    parser.add_argument('--simulate', action='store_true', help='Fire a sandbox C2B payment after registering')
    parser.add_argument('--amount', type=int, default=1)
    parser.add_argument('--msisdn', default=SANDBOX_TEST_MSISDN)
    parser.add_argument('--reference', default='TEST')
    parser.add_argument('--dry-run', action='store_true', help='Print the registration body without calling the gateway')
    return parser.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)
    try:
        config = load_gateway_config(os.environ)
        result = run(args, config)
    except PaymentError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == '__main__':
    sys.exit(main())
