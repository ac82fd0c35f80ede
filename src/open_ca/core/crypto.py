"""Cryptographic operations delegated to the cryptography library.

The CA engine never implements primitives itself. Everything that touches
key material or produces a signature goes through this module so failures
surface uniformly as :class:`CryptoError`.
"""

from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509 import ocsp

from .errors import CryptoError

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]

SUPPORTED_ALGORITHMS = ("RSA", "EC")

_CURVES = {
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}


def generate_keypair(
    algorithm: str = "RSA",
    key_size: int = 2048,
    curve: str = "secp384r1",
) -> PrivateKey:
    """Generate a new private key.

    Args:
        algorithm: "RSA" or "EC"
        key_size: RSA modulus size in bits
        curve: Named curve for EC keys

    Returns:
        The private key (the public half is reachable via ``public_key()``)

    Raises:
        CryptoError: If the algorithm or its parameters are not supported
    """
    algorithm = algorithm.upper()
    try:
        if algorithm == "RSA":
            return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        if algorithm == "EC":
            if curve not in _CURVES:
                raise CryptoError(f"Unsupported EC curve: {curve}")
            return ec.generate_private_key(_CURVES[curve]())
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Key generation failed ({algorithm}): {e}") from e
    raise CryptoError(f"Unsupported key algorithm: {algorithm}")


def signature_hash() -> hashes.HashAlgorithm:
    """Digest used for every signature the CA produces (OpenSSL default_md)."""
    return hashes.SHA256()


def sign_certificate(
    issuer_key: PrivateKey, builder: x509.CertificateBuilder, context: str
) -> x509.Certificate:
    """Sign a to-be-signed certificate with the issuer key.

    Args:
        issuer_key: Issuer's private key (the subject's own key when self-signing)
        builder: Fully populated certificate builder
        context: Description used in error messages (operation and subject)

    Raises:
        CryptoError: If signing fails
    """
    try:
        return builder.sign(private_key=issuer_key, algorithm=signature_hash())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Signing failed for {context}: {e}") from e


def self_sign(key: PrivateKey, builder: x509.CertificateBuilder, context: str) -> x509.Certificate:
    """Self-sign a certificate (the builder must carry the key's own public key)."""
    return sign_certificate(key, builder, context)


def sign_csr(
    key: PrivateKey, builder: x509.CertificateSigningRequestBuilder, context: str
) -> x509.CertificateSigningRequest:
    """Produce a signing request proving possession of ``key``."""
    try:
        return builder.sign(key, signature_hash())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"CSR signing failed for {context}: {e}") from e


def sign_crl(
    issuer_key: PrivateKey, builder: x509.CertificateRevocationListBuilder, context: str
) -> x509.CertificateRevocationList:
    try:
        return builder.sign(private_key=issuer_key, algorithm=signature_hash())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"CRL signing failed for {context}: {e}") from e


def sign_ocsp_response(
    signer_key: PrivateKey, builder: ocsp.OCSPResponseBuilder, context: str
) -> ocsp.OCSPResponse:
    try:
        return builder.sign(signer_key, signature_hash())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"OCSP response signing failed for {context}: {e}") from e


def public_key_bits(public_key: PublicKey) -> bytes:
    """Contents of the subjectPublicKey BIT STRING (what OCSP key hashes cover)."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return public_key.public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
    raise CryptoError(f"Unsupported key type: {type(public_key).__name__}")


def issuer_hashes(issuer: x509.Certificate, algorithm: hashes.HashAlgorithm) -> tuple[bytes, bytes]:
    """Issuer name and key hashes identifying ``issuer`` in an OCSP CertID."""
    name_hash = hashes.Hash(algorithm)
    name_hash.update(issuer.subject.public_bytes())
    key_hash = hashes.Hash(algorithm)
    key_hash.update(public_key_bits(issuer.public_key()))
    return name_hash.finalize(), key_hash.finalize()


def verify_signature(
    public_key: PublicKey,
    signature: bytes,
    data: bytes,
    algorithm: Optional[hashes.HashAlgorithm],
) -> bool:
    """Check a detached signature (PKCS#1 v1.5 for RSA, ECDSA for EC)."""
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), algorithm)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(algorithm))
        else:
            return False
        return True
    except (InvalidSignature, ValueError, TypeError, UnsupportedAlgorithm):
        return False


def is_issued_by(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    """Check the issuer name linkage and signature of a single link."""
    try:
        certificate.verify_directly_issued_by(issuer)
        return True
    except (ValueError, TypeError, InvalidSignature):
        return False


def private_key_to_pem(key: PrivateKey, passphrase: Optional[bytes] = None) -> bytes:
    """Serialize a private key as PKCS#8 PEM, encrypted when a passphrase is given."""
    encryption = (
        serialization.BestAvailableEncryption(passphrase)
        if passphrase
        else serialization.NoEncryption()
    )
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def private_key_from_pem(data: bytes, passphrase: Optional[bytes] = None) -> PrivateKey:
    """Load a PEM private key.

    Raises:
        CryptoError: If the key cannot be decrypted or parsed
    """
    try:
        return serialization.load_pem_private_key(data, password=passphrase or None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Failed to load private key: {e}") from e


def certificate_to_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def certificate_from_pem(data: bytes) -> x509.Certificate:
    return x509.load_pem_x509_certificate(data)


def key_algorithm(key: Union[PrivateKey, PublicKey]) -> str:
    """Name the algorithm family of a key."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return "RSA"
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return "EC"
    raise CryptoError(f"Unsupported key type: {type(key).__name__}")
