#!/usr/bin/env python3
"""CRL (Certificate Revocation List) Example - Batch revocation checking."""

from open_ca import CAConfig, CertificateAuthority, RevocationReason


def main():
    print("=== CRL (Certificate Revocation List) Example ===\n")

    ca = CertificateAuthority(CAConfig(algorithm="EC", crl_days=7))
    ca.bootstrap("Example Root CA", "Example Intermediate CA")
    issued = {name: ca.issue_server(name) for name in ("a.example.com", "b.example.com", "c.example.com")}

    # Revoke certificates
    print("1. Revoking certificates...")
    ca.revoke(issued["a.example.com"].serial, RevocationReason.KEY_COMPROMISE)
    ca.revoke(issued["b.example.com"].serial, RevocationReason.CESSATION_OF_OPERATION)
    print(f"   ✓ Revoked {sum(r.is_revoked for r in ca.certificates())} certificates\n")

    # Generate CRL
    print("2. Publishing CRL...")
    crl = ca.publish_crl()
    print(f"   ✓ CRL Number:  {crl.crl_number:#x}")
    print(f"   ✓ This Update: {crl.this_update.isoformat()}")
    print(f"   ✓ Next Update: {crl.next_update.isoformat()}")
    print(f"   ✓ Entries:     {len(crl.entries)}\n")

    # Check revocation
    print("3. Checking certificate status...")
    for name, cert in issued.items():
        status = "REVOKED" if cert.serial in crl.serials() else "GOOD"
        print(f"   • {name} ({cert.serial:#x}): {status}")

    print("\n=== CRL vs OCSP ===")
    print("CRL: Batch download, works offline, larger bandwidth")
    print("OCSP: Real-time queries, smaller bandwidth, requires online access")


if __name__ == "__main__":
    main()
