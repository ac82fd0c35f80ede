"""Leaf certificate issuance under the intermediate CA."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Union

from cryptography import x509
from cryptography.x509.oid import AuthorityInformationAccessOID
from pydantic import BaseModel, Field, field_validator

from ..authority.hierarchy import TrustHierarchy, build_extensions, record_for
from ..core import crypto
from ..core.errors import DuplicateSubjectError, InvalidInputError, ValidityError
from ..core.models import (
    LEAF_CLASSES,
    CertClass,
    DistinguishedName,
    IssuedCertificate,
)
from ..policy.catalog import PolicyRule

logger = logging.getLogger(__name__)

KeyInput = Union[crypto.PrivateKey, crypto.PublicKey]


class IssuanceRequest(BaseModel):
    """Everything one issuance needs, passed explicitly per request."""

    cert_class: CertClass = Field(description="server, user or ocsp_signer")
    subject: DistinguishedName
    subject_alt_names: tuple[str, ...] = Field(
        default=(), description="DNS names beyond the primary name and its wildcard"
    )
    validity_days: Optional[int] = Field(default=None, description="Requested lifetime in days")
    crl_url: Optional[str] = Field(default=None, description="Overrides config.crl_url")
    ocsp_url: Optional[str] = Field(default=None, description="Overrides config.ocsp_url")

    model_config = {"frozen": True}

    @field_validator("subject", mode="before")
    @classmethod
    def parse_subject(cls, v):
        return DistinguishedName.parse(v) if isinstance(v, str) else v

    @field_validator("subject_alt_names", mode="before")
    @classmethod
    def strip_names(cls, v):
        if v is None:
            return ()
        names = tuple(n.strip() for n in v)
        if any(not n for n in names):
            raise ValueError("subject alternative names must not be empty")
        return names


class IssuanceEngine:
    """Issues server, user and OCSP signer certificates from the intermediate."""

    def __init__(self, hierarchy: TrustHierarchy):
        """Initialize engine.

        Args:
            hierarchy: Operational trust hierarchy whose intermediate signs
        """
        self.hierarchy = hierarchy
        self.config = hierarchy.config

    def issue(
        self,
        cert_class: CertClass,
        subject: "DistinguishedName | str",
        key: Optional[KeyInput] = None,
        subject_alt_names: Optional[list[str]] = None,
        validity_days: Optional[int] = None,
        replacing: Iterable[int] = (),
    ) -> IssuedCertificate:
        """Issue a certificate.

        Args:
            cert_class: server, user or ocsp_signer
            subject: Subject DN (or bare common name)
            key: Requester's key pair or public key; generated when omitted
            subject_alt_names: Extra DNS names for server certificates
            validity_days: Requested lifetime (config.cert_days if not provided)
            replacing: Serials of live certificates allowed to share the
                subject; the caller revokes them once this issuance succeeds

        Returns:
            IssuedCertificate with the leaf-to-root chain

        Raises:
            NotBootstrappedError: If the hierarchy is not operational
            ValidationError: If the request violates policy or the name is taken
            CryptoError: If key generation or signing fails
        """
        try:
            request = IssuanceRequest(
                cert_class=cert_class,
                subject=DistinguishedName.parse(subject),
                subject_alt_names=tuple(subject_alt_names or ()),
                validity_days=validity_days,
            )
        except ValueError as e:
            raise InvalidInputError(f"Invalid issuance request: {e}") from e
        return self.issue_request(request, key=key, replacing=replacing)

    def issue_request(
        self,
        request: IssuanceRequest,
        key: Optional[KeyInput] = None,
        replacing: Iterable[int] = (),
    ) -> IssuedCertificate:
        """Issue a certificate for a prepared request."""
        intermediate = self.hierarchy.require_operational()

        if request.cert_class not in LEAF_CLASSES:
            raise InvalidInputError(
                f"The intermediate does not issue {request.cert_class.value} certificates"
            )

        subject = request.subject.with_defaults(self.config.subject_defaults)
        issuer_dn = intermediate.subject
        rule = intermediate.policy.resolve(request.cert_class, issuer_dn)
        intermediate.policy.validate_subject(subject, rule, issuer_dn)

        if request.subject_alt_names and not rule.san_templates:
            raise InvalidInputError(
                f"{request.cert_class.value} certificates do not carry subject alternative names"
            )
        dns_names = (
            rule.subject_alt_names(subject.common_name, request.subject_alt_names)
            if rule.san_templates
            else []
        )
        for name in dns_names:
            if not name.isascii():
                raise InvalidInputError(
                    f"DNS name {name!r} must be ASCII (IDNA A-label form, e.g. xn--...)"
                )

        days = self.config.cert_days if request.validity_days is None else request.validity_days
        if days <= 0:
            raise ValidityError("Validity must be a positive number of days")
        now = datetime.now(timezone.utc)
        if intermediate.not_after <= now:
            raise ValidityError("Intermediate CA certificate has expired")
        not_after = min(now + timedelta(days=days), intermediate.not_after)

        generated = None
        if key is None:
            generated = crypto.generate_keypair(**self.config.key_params(ca=False))
            public_key = generated.public_key()
        elif hasattr(key, "public_key"):
            public_key = key.public_key()
        else:
            public_key = key
        crypto.key_algorithm(public_key)

        context = f"{request.cert_class.value} certificate {subject}"
        index = intermediate.index
        with index.reserve() as reservation:
            existing = index.find_live(subject.identity, exclude=replacing)
            if existing is not None:
                logger.warning(
                    "Refusing duplicate %s certificate for %s (live serial %#x)",
                    request.cert_class.value,
                    subject.common_name,
                    existing.serial,
                )
                raise DuplicateSubjectError(subject.common_name, existing.serial)

            builder = (
                x509.CertificateBuilder()
                .subject_name(subject.to_x509_name())
                .issuer_name(intermediate.certificate.subject)
                .public_key(public_key)
                .serial_number(reservation.serial)
                .not_valid_before(now)
                .not_valid_after(not_after)
            )
            builder = build_extensions(builder, rule, public_key, intermediate.certificate)
            if dns_names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]),
                    critical=False,
                )
            builder = self._add_revocation_pointers(builder, rule, request)

            with intermediate.signing_key() as signing_key:
                certificate = crypto.sign_certificate(signing_key, builder, context)

            self.hierarchy.storage.save_certificate(
                "intermediate", reservation.serial, crypto.certificate_to_pem(certificate)
            )
            record = record_for(certificate, request.cert_class, subject)
            reservation.commit(record)

        logger.info(
            "Issued %s certificate %#x for %s until %s",
            request.cert_class.value,
            record.serial,
            subject.common_name,
            record.not_after.isoformat(),
        )
        return IssuedCertificate(
            certificate=certificate,
            record=record,
            chain=self.hierarchy.chain_of(include_root=True),
            private_key=generated,
        )

    def _add_revocation_pointers(
        self,
        builder: x509.CertificateBuilder,
        rule: PolicyRule,
        request: IssuanceRequest,
    ) -> x509.CertificateBuilder:
        if not rule.revocation_pointers:
            return builder
        crl_url = request.crl_url or self.config.crl_url
        ocsp_url = request.ocsp_url or self.config.ocsp_url
        if crl_url:
            builder = builder.add_extension(
                x509.CRLDistributionPoints(
                    [
                        x509.DistributionPoint(
                            full_name=[x509.UniformResourceIdentifier(crl_url)],
                            relative_name=None,
                            reasons=None,
                            crl_issuer=None,
                        )
                    ]
                ),
                critical=False,
            )
        if ocsp_url:
            builder = builder.add_extension(
                x509.AuthorityInformationAccess(
                    [
                        x509.AccessDescription(
                            AuthorityInformationAccessOID.OCSP,
                            x509.UniformResourceIdentifier(ocsp_url),
                        )
                    ]
                ),
                critical=False,
            )
        return builder
