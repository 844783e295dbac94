#!/usr/bin/env python3
"""Wallet Creation Script.

Generates a new ledger keypair, encrypts it under a wallet secret and
optionally registers it with the backend and stores it locally.

Usage:
    python scripts/create_wallet.py --account ACCOUNT_ID [--register] [--store]

Options:
    --account  Account the wallet belongs to
    --secret   Wallet secret (default: generate a random one)
    --register Post the wallet to the backend registration endpoint
    --store    Save the record in the local wallet store
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from ecoswap.backend.http import HttpBackend
from ecoswap.crypto import generate_wallet_secret
from ecoswap.errors import EcoswapError
from ecoswap.logging_config import register_sensitive, setup_logging
from ecoswap.store.database import WalletStore
from ecoswap.store.repository import WalletRepository
from ecoswap.wallet.vault import WalletVault

load_dotenv()

setup_logging()
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Create an encrypted wallet")
    parser.add_argument("--account", type=str, required=True, help="Account id")
    parser.add_argument("--secret", type=str, help="Wallet secret (generated if omitted)")
    parser.add_argument("--register", action="store_true", help="Register with the backend")
    parser.add_argument("--store", action="store_true", help="Save in the local wallet store")
    args = parser.parse_args()

    generated = not args.secret
    secret = args.secret or generate_wallet_secret()
    register_sensitive(secret)

    vault = WalletVault()
    record = vault.create(secret)
    logger.info(f"Created wallet {record.public_key} for account {args.account}")

    try:
        if args.register:
            await HttpBackend().register_wallet(record, secret)

        if args.store:
            async with WalletStore() as store:
                async with store.session() as session:
                    await WalletRepository(session).save_record(args.account, record)
            logger.info(f"Stored wallet in {store!r}")
    except EcoswapError as e:
        logger.error(f"Wallet creation failed: {e}")
        return 1

    print(f"Public key: {record.public_key}")
    if generated:
        # Printed once; it is never logged or stored
        print(f"Secret:     {secret}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
