#!/usr/bin/env python3
"""OCSP Example - Real-time revocation checking with a delegated signer."""

from open_ca import CAConfig, CertificateAuthority, RevocationReason
from open_ca.trust.ocsp import build_request, parse_response


def main():
    print("=== OCSP (Online Certificate Status Protocol) Example ===\n")

    ca = CertificateAuthority(CAConfig(algorithm="EC"))
    ca.bootstrap("Example Root CA", "Example Intermediate CA")

    # The intermediate certifies a dedicated OCSP signing key
    print("1. Setting up OCSP signer...")
    responder = ca.setup_ocsp("ocsp.example.com")
    responder.start()
    print(f"   ✓ Signer serial {responder.signer.serial:#x}\n")

    print("2. Issuing and querying...")
    issued = ca.issue_server("shop.example.com")
    result = responder.query(issued.serial)
    print(f"   • {issued.serial:#x}: {result.status.value.upper()}")

    print("\n3. Revoking and querying again...")
    ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
    result = responder.query(issued.serial)
    print(f"   • {issued.serial:#x}: {result.status.value.upper()} ({result.reason.value})")

    # What a relying party does with the wire format
    print("\n4. Standard DER request/response...")
    issuer = ca.hierarchy.intermediate.certificate
    nonce = b"example-nonce-01"
    der = responder.respond(build_request(issued.certificate, issuer, nonce))
    verified = parse_response(der, issued.certificate, issuer, nonce)
    print(f"   ✓ {len(der)} byte response, verified status {verified.status.value.upper()}")

    print("\n5. Unknown serial...")
    print(f"   • 0xdead: {responder.query(0xDEAD).status.value.upper()}")

    responder.stop()


if __name__ == "__main__":
    main()
