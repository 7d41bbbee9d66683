#!/usr/bin/env python3
"""Generate an Ed25519 keypair for signing requester certificates.

The public key is what the marketplace verifies certificates against:

  - Set AUTHORITY_PUBLIC_KEY (MarketplaceConfig.authority_public_key) to
    the bare base64 body printed below; PEM headers are optional.
  - Keep the private key with the authority that issues certificates.

With ``--issue <requester> --action <action>`` a short-lived sample
certificate is printed too; item actions also need ``--item COLLECTION/ID``.
"""

from __future__ import annotations

import argparse
import time
import uuid

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from bazaar.certificate import authority_fingerprint
from bazaar.constants import CERTIFICATE_PROTOCOL, ITEM_SCOPED_ACTIONS, CertifiedAction


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--issue", metavar="REQUESTER", help="also sign a sample certificate")
    parser.add_argument(
        "--action", choices=[a.value for a in CertifiedAction], default="withdraw",
        help="action the sample certificate authorizes",
    )
    parser.add_argument("--item", metavar="COLLECTION/ID", help="item for list/cancel/reprice/buy")
    parser.add_argument("--ttl", type=int, default=600, help="certificate lifetime in seconds")
    args = parser.parse_args()
    action = CertifiedAction(args.action)
    if args.issue and action in ITEM_SCOPED_ACTIONS and not args.item:
        parser.error(f"--action {action.value} needs --item COLLECTION/ID")

    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    bare_public = "".join(
        ln for ln in public_pem.strip().splitlines() if not ln.startswith("-----")
    )

    print("=== Ed25519 Authority Keypair ===")
    print()
    print("Public key (set as AUTHORITY_PUBLIC_KEY):")
    print(f"  {bare_public}")
    print(f"  fingerprint: {authority_fingerprint(private_key.public_key())}")
    print()
    print("Private key (PRIVATE, back up securely, never commit to git):")
    print(private_pem)

    if args.issue:
        now = int(time.time())
        claims = {
            "sub": args.issue,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + args.ttl,
            "bazaar_protocol": CERTIFICATE_PROTOCOL,
            "bazaar_action": action.value,
        }
        if action in ITEM_SCOPED_ACTIONS:
            collection, _, item_id = args.item.rpartition("/")
            claims["collection"] = collection
            claims["item_id"] = int(item_id)
        token = jwt.encode(claims, private_key, algorithm="EdDSA")
        print(
            f"Sample {action.value} certificate for {args.issue} "
            f"(expires in {args.ttl}s):"
        )
        print(f"  {token}")


if __name__ == "__main__":
    main()
