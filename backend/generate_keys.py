#!/usr/bin/env python3
"""
Generate the RSA key pair used to sign receipts.
Keys go to SIGNING_PRIVATE_KEY_PATH / SIGNING_PUBLIC_KEY_PATH (config/keys by default).
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from controlai.core.config import settings
from controlai.services.signature_service import generate_key_pair


def main(force: bool = False) -> int:
    private_path = settings.signing_private_key_path
    public_path = settings.signing_public_key_path
    if not force and (os.path.exists(private_path) or os.path.exists(public_path)):
        print(f"✗ Keys already exist at {private_path}; pass --force to overwrite")
        return 1

    generate_key_pair(private_path, public_path)
    print(f"✓ Private key: {private_path}")
    print(f"✓ Public key:  {public_path}")
    print("Set SIGNING_ENABLED=true to sign new receipts.")
    return 0


if __name__ == '__main__':
    sys.exit(main(force="--force" in sys.argv[1:]))
