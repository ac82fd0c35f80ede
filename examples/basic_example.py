#!/usr/bin/env python3
"""
Basic example demonstrating the complete open-ca workflow:
1. Bootstrap a root and an intermediate CA on disk
2. Issue a server and a user certificate
3. Export them with the CA chain
"""

import sys
import tempfile
from pathlib import Path

from open_ca import CAConfig, CertificateAuthority, DistinguishedName, FileStorage, verify_chain


def main():
    print("=== Open CA - Basic Example ===\n")

    workdir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(tempfile.mkdtemp(prefix="open-ca-"))

    # ============================================================================
    # STEP 1: Configure the CA
    # ============================================================================
    print("1. Configuring CA...")
    config = CAConfig(
        algorithm="EC",
        subject_defaults=DistinguishedName(
            country="GB", state="England", organization="Example Ltd"
        ),
        crl_url="http://pki.example.com/crl",
        ocsp_url="http://pki.example.com/ocsp",
    )
    ca = CertificateAuthority(config, FileStorage(workdir / "ca"))
    print(f"   ✓ Storage: {workdir / 'ca'} ({ca.state.value})\n")

    # ============================================================================
    # STEP 2: Bootstrap root and intermediate
    # ============================================================================
    print("2. Bootstrapping root and intermediate...")
    root, intermediate = ca.bootstrap("Example Root CA", "Example Intermediate CA")
    print(f"   ✓ Root:         {root.subject} (serial {root.serial:#x})")
    print(f"   ✓ Intermediate: {intermediate.subject} (serial {intermediate.serial:#x})\n")

    # ============================================================================
    # STEP 3: Issue certificates
    # ============================================================================
    print("3. Issuing certificates...")
    server = ca.issue_server("www.example.com", subject_alt_names=["example.com"])
    user = ca.issue_user("alice", subject=DistinguishedName(email="alice@example.com"))
    for issued in (server, user):
        print(
            f"   ✓ {issued.record.cert_class.value:<6} {issued.record.common_name:<16} "
            f"serial {issued.serial:#x} until {issued.record.not_after:%Y-%m-%d}"
        )
    print(f"   ✓ Chain verifies: {verify_chain(server.certificate, [intermediate.certificate], [root.certificate])}\n")

    # ============================================================================
    # STEP 4: Export
    # ============================================================================
    print("4. Exporting server certificate...")
    for kind, path in ca.export(server, workdir / "out").items():
        print(f"   • {kind:<13} {path}")

    print("\n=== Done ===")


if __name__ == "__main__":
    main()
