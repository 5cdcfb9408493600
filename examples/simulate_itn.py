#!/usr/bin/env python3
"""
Example: Simulate a PayFast ITN callback for testing.

This script signs a notification with the local PayFast configuration and
posts it to a running billing service, without going through the gateway.

Usage:
    python simulate_itn.py 5f0c...-user-id
    python simulate_itn.py 5f0c...-user-id --status CANCELLED
    python simulate_itn.py 5f0c...-user-id --reference pf_..._1700000000000_ab12cd34

Arguments:
    user_id: Account to upgrade (must already exist in the account store)
"""

import argparse
import asyncio
import os
import secrets
import sys

import aiohttp

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import config
from models.payment import PaymentReference
from services.signature import generate_signature


async def simulate_itn(
    user_id: str,
    status: str = "COMPLETE",
    amount: str = None,
    reference: str = None,
    url: str = None
) -> None:
    """Build, sign and post a simulated ITN."""
    payfast = config.payfast
    amount = amount or payfast.amount
    reference = reference or str(PaymentReference.generate(user_id))
    url = url or f"http://localhost:{config.api.port}/api/payfast/itn"

    fields = {
        "m_payment_id": reference,
        "pf_payment_id": str(secrets.randbelow(10 ** 7)),
        "payment_status": status,
        "item_name": payfast.item_name,
        "amount_gross": amount,
        "amount_fee": "-2.28",
        "amount_net": "96.72",
        "custom_str1": user_id,
        "merchant_id": payfast.merchant_id,
    }
    fields["signature"] = generate_signature(fields, payfast.passphrase, payfast.signing)

    print(f"Posting ITN for {reference}")
    print(f"  Status: {status}")
    print(f"  Amount: {amount}")
    print(f"  Target: {url}")
    print()

    async with aiohttp.ClientSession() as session:
        async with session.post(url, data=fields) as response:
            body = await response.text()

    if response.status == 200:
        print(f"✅ Accepted ({response.status}): {body}")
    else:
        print(f"❌ Rejected ({response.status}): {body}")


async def main():
    parser = argparse.ArgumentParser(
        description='Simulate a PayFast ITN callback for testing'
    )
    parser.add_argument(
        'user_id',
        help='Account identifier embedded in the payment reference'
    )
    parser.add_argument(
        '--status',
        default='COMPLETE',
        choices=['COMPLETE', 'PENDING', 'CANCELLED', 'FAILED'],
        help='Payment status (default: COMPLETE)'
    )
    parser.add_argument(
        '--amount',
        help='Gross amount (default: configured price)'
    )
    parser.add_argument(
        '--reference',
        help='Reuse an existing m_payment_id, e.g. to test redelivery'
    )
    parser.add_argument(
        '--url',
        help='ITN endpoint (default: local service)'
    )

    args = parser.parse_args()

    await simulate_itn(
        user_id=args.user_id,
        status=args.status,
        amount=args.amount,
        reference=args.reference,
        url=args.url
    )


if __name__ == '__main__':
    asyncio.run(main())
