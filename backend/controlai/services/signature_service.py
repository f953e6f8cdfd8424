"""
Serviço de assinatura digital dos recibos.

A assinatura principal é destacada: um envelope JSON gravado ao lado do PDF
(`{receiptNumber}.pdf.sig`). O bloco de trailer `%%ControlAISignature:...%%`
continua disponível para compatibilidade com recibos antigos.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding


logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "SHA256"
SIGNATURE_VERSION = "1.0"
TRAILER_PREFIX = b"\n%%ControlAISignature:"
TRAILER_SUFFIX = b"%%"
DETACHED_SUFFIX = ".sig"


class SignatureError(Exception):
    pass


@dataclass
class SignatureMetadata:
    timestamp: str
    issuer: str
    serialNumber: str
    algorithm: str = SIGNATURE_ALGORITHM

    @classmethod
    def from_dict(cls, data: dict) -> "SignatureMetadata":
        try:
            return cls(
                timestamp=data["timestamp"],
                issuer=data["issuer"],
                serialNumber=data["serialNumber"],
                algorithm=data.get("algorithm", SIGNATURE_ALGORITHM),
            )
        except (KeyError, TypeError) as e:
            raise SignatureError(f"Invalid signature metadata: {e}") from e

    def to_json(self) -> bytes:
        # Compact form: it is part of the signed bytes
        return json.dumps(asdict(self), separators=(",", ":")).encode("utf-8")


@dataclass
class SignedDocument:
    signature: str
    metadata: SignatureMetadata


def generate_serial_number() -> str:
    seed = f"{datetime.now(timezone.utc).timestamp()}{secrets.token_hex(8)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


class SignatureService:
    def __init__(self, private_key_path: str, public_key_path: str):
        self.private_key_path = private_key_path
        self.public_key_path = public_key_path

    def _read_key(self, key_path: str) -> bytes:
        try:
            with open(key_path, "rb") as fh:
                return fh.read()
        except OSError as e:
            raise SignatureError(f"Failed to load key from {key_path}: {e}") from e

    def _private_key(self):
        try:
            return serialization.load_pem_private_key(self._read_key(self.private_key_path), password=None)
        except (ValueError, TypeError) as e:
            raise SignatureError(f"Invalid private key {self.private_key_path}: {e}") from e

    def _public_key(self):
        try:
            return serialization.load_pem_public_key(self._read_key(self.public_key_path))
        except (ValueError, TypeError) as e:
            raise SignatureError(f"Invalid public key {self.public_key_path}: {e}") from e

    def sign_pdf(self, pdf: bytes, issuer: str) -> SignedDocument:
        """Sign pdf ‖ JSON(metadata) with the private key (RSA PKCS#1 v1.5, SHA-256)."""
        metadata = SignatureMetadata(
            timestamp=datetime.now(timezone.utc).isoformat(),
            issuer=issuer,
            serialNumber=generate_serial_number(),
        )
        signature = self._private_key().sign(pdf + metadata.to_json(), padding.PKCS1v15(), hashes.SHA256())
        return SignedDocument(signature=base64.b64encode(signature).decode("ascii"), metadata=metadata)

    def verify_signature(self, pdf: bytes, signature: str, metadata: SignatureMetadata) -> bool:
        public_key = self._public_key()
        try:
            raw = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        try:
            public_key.verify(raw, pdf + metadata.to_json(), padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            return False
        return True

    # Detached envelope

    def write_detached(self, pdf_path: str, pdf: bytes, signed: SignedDocument) -> str:
        envelope = {
            "version": SIGNATURE_VERSION,
            "signature": signed.signature,
            "metadata": asdict(signed.metadata),
            "sha256": hashlib.sha256(pdf).hexdigest(),
        }
        sig_path = pdf_path + DETACHED_SUFFIX
        with open(sig_path, "w", encoding="utf-8") as fh:
            json.dump(envelope, fh)
        return sig_path

    def read_detached(self, sig_path: str) -> SignedDocument:
        try:
            with open(sig_path, "r", encoding="utf-8") as fh:
                envelope = json.load(fh)
        except (OSError, ValueError) as e:
            raise SignatureError(f"Failed to read signature {sig_path}: {e}") from e
        if not isinstance(envelope, dict) or "signature" not in envelope:
            raise SignatureError(f"Malformed signature envelope {sig_path}")
        return SignedDocument(
            signature=envelope["signature"],
            metadata=SignatureMetadata.from_dict(envelope.get("metadata")),
        )

    def verify_file(self, pdf_path: str, sig_path: Optional[str] = None) -> bool:
        with open(pdf_path, "rb") as fh:
            pdf = fh.read()
        signed = self.read_detached(sig_path or pdf_path + DETACHED_SUFFIX)
        return self.verify_signature(pdf, signed.signature, signed.metadata)


# Trailer compatibility

def embed_signature(pdf: bytes, signature: str, metadata: SignatureMetadata) -> bytes:
    block = json.dumps({"signature": signature, "metadata": asdict(metadata), "version": SIGNATURE_VERSION})
    encoded = base64.b64encode(block.encode("utf-8"))
    return pdf + TRAILER_PREFIX + encoded + TRAILER_SUFFIX


def extract_signature(data: bytes) -> Tuple[bytes, Optional[str], Optional[SignatureMetadata]]:
    """Split a trailer-signed PDF into (original bytes, signature, metadata)."""
    start = data.rfind(TRAILER_PREFIX)
    if start == -1:
        return data, None, None

    block = data[start + len(TRAILER_PREFIX):]
    if not block.endswith(TRAILER_SUFFIX) or len(block) <= len(TRAILER_SUFFIX):
        raise SignatureError("Failed to extract signature: unterminated signature block")
    try:
        decoded = base64.b64decode(block[: -len(TRAILER_SUFFIX)], validate=True)
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise SignatureError(f"Failed to extract signature: {e}") from e
    if not isinstance(payload, dict) or "signature" not in payload:
        raise SignatureError("Failed to extract signature: missing signature field")

    return data[:start], payload["signature"], SignatureMetadata.from_dict(payload.get("metadata"))


def generate_key_pair(private_key_path: str, public_key_path: str, key_size: int = 2048) -> None:
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    for path in (private_key_path, public_key_path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    with open(private_key_path, "wb") as fh:
        fh.write(key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ))
    with open(public_key_path, "wb") as fh:
        fh.write(key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ))
    logger.info("Generated signing key pair at %s / %s", private_key_path, public_key_path)
