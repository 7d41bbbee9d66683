"""Requester certificates: authority-signed Ed25519 JWTs scoped to one action.

A certificate names the requester (``sub``), the marketplace action it
authorizes (``bazaar_action``) and, for item actions, the exact
``collection``/``item_id``. A certificate issued to list one item can
therefore not be replayed to cancel it or to buy a different one. Each
``jti`` is accepted once per process.
"""

from __future__ import annotations

import base64
import hashlib
import heapq
import logging
import time
from dataclasses import dataclass

import jwt
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_pem_public_key,
)

from bazaar.constants import CERTIFICATE_PROTOCOL, ITEM_SCOPED_ACTIONS, CertifiedAction

logger = logging.getLogger(__name__)

_PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
_PEM_FOOTER = "-----END PUBLIC KEY-----"


class CertificateError(Exception):
    """Raised when a requester certificate fails validation."""


@dataclass(frozen=True)
class RequesterCertificate:
    """Verified claims of a requester certificate."""

    requester: str
    action: CertifiedAction
    jti: str
    expires_at: int
    collection: str | None = None
    item_id: int | None = None


# ---------------------------------------------------------------------------
# Authority key
# ---------------------------------------------------------------------------


def load_authority_key(raw: str) -> Ed25519PublicKey:
    """Load the authority's Ed25519 public key from PEM or its bare base64 body.

    Raises CertificateError for anything that is not an Ed25519 public key.
    """
    body = raw.strip()
    pem = body if body.startswith("-----") else f"{_PEM_HEADER}\n{body}\n{_PEM_FOOTER}"
    try:
        key = load_pem_public_key(pem.encode())
    except (ValueError, TypeError) as e:
        raise CertificateError(f"Invalid authority public key: {e}") from e
    if not isinstance(key, Ed25519PublicKey):
        raise CertificateError(
            f"Authority public key must be Ed25519, got {type(key).__name__}."
        )
    return key


def authority_fingerprint(key: Ed25519PublicKey) -> str:
    """Short SHA-256 fingerprint of the raw key bytes, for operator display."""
    raw = key.public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base64.b32encode(hashlib.sha256(raw).digest()).decode()[:16].lower()


# ---------------------------------------------------------------------------
# Replay guard
# ---------------------------------------------------------------------------


class _ReplayGuard:
    """Remembers accepted certificate ids until they expire."""

    def __init__(self) -> None:
        self._expiry: dict[str, int] = {}
        self._queue: list[tuple[int, str]] = []

    def accept(self, jti: str, expires_at: int) -> bool:
        """Record ``jti``. False if it was already accepted and has not expired."""
        now = time.time()
        while self._queue and self._queue[0][0] <= now:
            _, old = heapq.heappop(self._queue)
            self._expiry.pop(old, None)
        if jti in self._expiry:
            return False
        self._expiry[jti] = expires_at
        heapq.heappush(self._queue, (expires_at, jti))
        return True


_replay_guard = _ReplayGuard()


def reset_jti_store() -> None:
    """Forget every accepted certificate id. Used by tests."""
    global _replay_guard
    _replay_guard = _ReplayGuard()


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_requester_certificate(
    token: str,
    authority_key: str | Ed25519PublicKey,
    action: CertifiedAction,
    *,
    collection: str | None = None,
    item_id: int | None = None,
) -> RequesterCertificate:
    """Verify a certificate and check that it authorizes ``action``.

    For item-scoped actions the certificate's ``collection`` and ``item_id``
    claims must equal the ones given here.

    Raises:
        CertificateError: On a bad signature, expiry, missing claim, wrong
            protocol, wrong action or item, or a replayed ``jti``.
    """
    key = load_authority_key(authority_key) if isinstance(authority_key, str) else authority_key

    try:
        claims = jwt.decode(
            token, key, algorithms=["EdDSA"],
            options={"require": ["sub", "jti", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise CertificateError("Certificate has expired.") from e
    except jwt.InvalidSignatureError as e:
        raise CertificateError("Certificate signature is invalid.") from e
    except jwt.InvalidTokenError as e:
        raise CertificateError(f"Invalid certificate: {e}") from e

    if claims.get("bazaar_protocol") != CERTIFICATE_PROTOCOL:
        raise CertificateError(
            f"Unsupported certificate protocol {claims.get('bazaar_protocol')!r}; "
            f"expected {CERTIFICATE_PROTOCOL!r}."
        )

    if claims.get("bazaar_action") != action.value:
        raise CertificateError(
            f"Certificate authorizes {claims.get('bazaar_action')!r}, not {action.value!r}."
        )

    scope: dict[str, object] = {}
    if action in ITEM_SCOPED_ACTIONS:
        scope = {"collection": collection, "item_id": item_id}
        for claim, expected in scope.items():
            if claims.get(claim) != expected:
                raise CertificateError(
                    f"Certificate is for {claim} {claims.get(claim)!r}, not {expected!r}."
                )

    # Checked last so that a rejected certificate stays usable.
    if not _replay_guard.accept(claims["jti"], int(claims["exp"])):
        raise CertificateError(f"Certificate {claims['jti']} was already used.")

    return RequesterCertificate(
        requester=str(claims["sub"]),
        action=action,
        jti=claims["jti"],
        expires_at=int(claims["exp"]),
        **scope,
    )
