#!/usr/bin/env python3
"""FastAPI Integration Example - Serving OCSP, the CRL and the CA chain."""

from open_ca import CAConfig, CertificateAuthority
from open_ca.integrations.fastapi import create_app

config = CAConfig(algorithm="EC", ocsp_url="http://localhost:8000/ocsp", crl_url="http://localhost:8000/crl")
ca = CertificateAuthority(config)
ca.bootstrap("Example Root CA", "Example Intermediate CA")
ca.setup_ocsp("localhost")
ca.publish_crl()

# The OCSP service starts and stops with the app
app = create_app(ca, autostart=True)


def main():
    print("FastAPI app configured with CA revocation endpoints!\n")
    print("Endpoints:")
    print("  POST /ocsp            - OCSP request (application/ocsp-request)")
    print("  GET  /ocsp/{base64}   - OCSP request, GET binding")
    print("  GET  /crl             - Latest CRL (DER)")
    print("  GET  /ca-chain        - CA chain (PEM)\n")
    print("To run:")
    print("  uvicorn fastapi_example:app --reload\n")
    print("Check a certificate:")
    print("  openssl ocsp -issuer intermediate.pem -cert leaf.pem -url http://localhost:8000/ocsp")


if __name__ == "__main__":
    # For demo purposes - in production use uvicorn
    main()
