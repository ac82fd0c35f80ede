"""Naming and extension policy per CA level and certificate class."""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from cryptography import x509
from cryptography.x509 import ObjectIdentifier
from cryptography.x509.oid import ExtendedKeyUsageOID

from ..core.errors import (
    MismatchedFieldError,
    MissingRequiredFieldError,
    PolicyNotFoundError,
)
from ..core.models import DN_FIELDS, CertClass, DistinguishedName

logger = logging.getLogger(__name__)


class FieldMode(str, Enum):
    """How a subject field is checked against policy."""

    MATCH = "match"
    SUPPLIED = "supplied"
    OPTIONAL = "optional"


class CALevel(str, Enum):
    ROOT = "root"
    INTERMEDIATE = "intermediate"


# Extended key usages by their OpenSSL short names
EXTENDED_KEY_USAGES: Mapping[str, ObjectIdentifier] = MappingProxyType(
    {
        "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
        "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
        "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
        "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
        "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
        "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
        "msCodeInd": ObjectIdentifier("1.3.6.1.4.1.311.2.1.21"),
        "msCodeCom": ObjectIdentifier("1.3.6.1.4.1.311.2.1.22"),
        "msEFS": ObjectIdentifier("1.3.6.1.4.1.311.10.3.4"),
    }
)

KEY_USAGES = frozenset(
    {
        "digital_signature",
        "content_commitment",
        "key_encipherment",
        "data_encipherment",
        "key_agreement",
        "key_cert_sign",
        "crl_sign",
    }
)

STRICT_FIELDS: Mapping[str, FieldMode] = MappingProxyType(
    {
        "country": FieldMode.MATCH,
        "state": FieldMode.MATCH,
        "organization": FieldMode.MATCH,
        "organizational_unit": FieldMode.OPTIONAL,
        "common_name": FieldMode.SUPPLIED,
        "email": FieldMode.OPTIONAL,
    }
)

LOOSE_FIELDS: Mapping[str, FieldMode] = MappingProxyType(
    {
        "country": FieldMode.OPTIONAL,
        "state": FieldMode.OPTIONAL,
        "locality": FieldMode.OPTIONAL,
        "organization": FieldMode.OPTIONAL,
        "organizational_unit": FieldMode.OPTIONAL,
        "common_name": FieldMode.SUPPLIED,
        "email": FieldMode.OPTIONAL,
    }
)


@dataclass(frozen=True)
class PolicyRule:
    """Subject requirements and extensions for one certificate class."""

    cert_class: CertClass
    dn_fields: Mapping[str, FieldMode]
    key_usage: frozenset[str]
    extended_key_usage: tuple[str, ...] = ()
    ca: bool = False
    path_length: Optional[int] = None
    eku_critical: bool = False
    san_templates: tuple[str, ...] = ()
    revocation_pointers: bool = False
    ocsp_no_check: bool = False
    comment: str = ""

    def __post_init__(self):
        unknown = set(self.dn_fields) - set(DN_FIELDS)
        if unknown:
            raise ValueError(f"Unknown subject fields in policy: {sorted(unknown)}")
        if self.dn_fields.get("common_name") is not FieldMode.SUPPLIED:
            raise ValueError("common_name must be supplied for every certificate class")
        if not self.key_usage <= KEY_USAGES:
            raise ValueError(f"Unknown key usages: {sorted(self.key_usage - KEY_USAGES)}")
        missing = [p for p in self.extended_key_usage if p not in EXTENDED_KEY_USAGES]
        if missing:
            raise ValueError(f"Unknown extended key usages: {missing}")

    def mode(self, field_name: str) -> FieldMode:
        return self.dn_fields.get(field_name, FieldMode.OPTIONAL)

    def key_usage_extension(self) -> x509.KeyUsage:
        flags = {name: name in self.key_usage for name in KEY_USAGES}
        return x509.KeyUsage(encipher_only=False, decipher_only=False, **flags)

    def extended_key_usage_extension(self) -> Optional[x509.ExtendedKeyUsage]:
        if not self.extended_key_usage:
            return None
        return x509.ExtendedKeyUsage([EXTENDED_KEY_USAGES[p] for p in self.extended_key_usage])

    def basic_constraints(self) -> x509.BasicConstraints:
        return x509.BasicConstraints(ca=self.ca, path_length=self.path_length if self.ca else None)

    def subject_alt_names(self, primary: str, extra: tuple[str, ...] = ()) -> list[str]:
        """Expand SAN templates around the primary name, then append extras.

        The primary name always comes first; duplicates are dropped.
        """
        names = [t.format(name=primary) for t in self.san_templates]
        result: list[str] = []
        for name in [*names, *extra]:
            if name and name.casefold() not in (n.casefold() for n in result):
                result.append(name)
        return result


CA_KEY_USAGE = frozenset({"digital_signature", "crl_sign", "key_cert_sign"})

ROOT_RULE = PolicyRule(
    cert_class=CertClass.ROOT,
    dn_fields=STRICT_FIELDS,
    key_usage=CA_KEY_USAGE,
    ca=True,
    comment="Root CA",
)

INTERMEDIATE_RULE = PolicyRule(
    cert_class=CertClass.INTERMEDIATE,
    dn_fields=STRICT_FIELDS,
    key_usage=CA_KEY_USAGE,
    ca=True,
    path_length=0,
    comment="Intermediate CA",
)

SERVER_RULE = PolicyRule(
    cert_class=CertClass.SERVER,
    dn_fields=LOOSE_FIELDS,
    key_usage=frozenset(
        {"digital_signature", "key_encipherment", "data_encipherment", "key_agreement"}
    ),
    extended_key_usage=(
        "serverAuth",
        "codeSigning",
        "msCodeInd",
        "msCodeCom",
        "msEFS",
        "timeStamping",
    ),
    san_templates=("{name}", "*.{name}"),
    revocation_pointers=True,
    comment="Server Certificate",
)

USER_RULE = PolicyRule(
    cert_class=CertClass.USER,
    dn_fields=LOOSE_FIELDS,
    key_usage=frozenset(
        {"content_commitment", "digital_signature", "key_encipherment", "key_agreement"}
    ),
    extended_key_usage=(
        "clientAuth",
        "emailProtection",
        "codeSigning",
        "msCodeInd",
        "msCodeCom",
        "msEFS",
    ),
    comment="User Certificate",
)

OCSP_SIGNER_RULE = PolicyRule(
    cert_class=CertClass.OCSP_SIGNER,
    dn_fields=LOOSE_FIELDS,
    key_usage=frozenset({"digital_signature"}),
    extended_key_usage=("OCSPSigning",),
    eku_critical=True,
    ocsp_no_check=True,
    comment="OCSP Signer",
)


class PolicyCatalog:
    """Immutable set of policy rules owned by one CA level."""

    def __init__(self, level: CALevel, rules: list[PolicyRule]):
        """Initialize catalog.

        Args:
            level: CA level the rules govern
            rules: One rule per certificate class this level may sign
        """
        self.level = level
        self._rules: Mapping[CertClass, PolicyRule] = MappingProxyType(
            {rule.cert_class: rule for rule in rules}
        )

    @classmethod
    def root(cls) -> "PolicyCatalog":
        """Strict policy: the root signs only itself and the intermediate."""
        return cls(CALevel.ROOT, [ROOT_RULE, INTERMEDIATE_RULE])

    @classmethod
    def intermediate(cls) -> "PolicyCatalog":
        """Loose policy for day-to-day issuance."""
        return cls(CALevel.INTERMEDIATE, [SERVER_RULE, USER_RULE, OCSP_SIGNER_RULE])

    @property
    def classes(self) -> frozenset[CertClass]:
        return frozenset(self._rules)

    def resolve(self, cert_class: CertClass, issuer_dn: DistinguishedName) -> PolicyRule:
        """Find the rule for a certificate class at this level.

        Raises:
            PolicyNotFoundError: If this level does not issue the class
        """
        cert_class = CertClass(cert_class)
        rule = self._rules.get(cert_class)
        if rule is None:
            raise PolicyNotFoundError(
                f"{self.level.value} CA has no policy for {cert_class.value} certificates"
            )
        logger.debug(
            "Resolved %s policy at %s level for issuer %s",
            cert_class.value,
            self.level.value,
            issuer_dn,
        )
        return rule

    @staticmethod
    def validate_subject(
        candidate: DistinguishedName, rule: PolicyRule, issuer_dn: DistinguishedName
    ) -> None:
        """Check a subject against a rule.

        Raises:
            MissingRequiredFieldError: A supplied field is empty
            MismatchedFieldError: A match field differs from the issuer's value
        """
        for field_name, mode in rule.dn_fields.items():
            value = candidate.get(field_name)
            if mode is FieldMode.SUPPLIED and not value:
                raise MissingRequiredFieldError(field_name)
            if mode is FieldMode.MATCH and value != issuer_dn.get(field_name):
                raise MismatchedFieldError(
                    field_name,
                    f"Subject {field_name} {value!r} must match issuer value "
                    f"{issuer_dn.get(field_name)!r}",
                )
