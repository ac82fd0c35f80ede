"""CA configuration."""

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .core.errors import ConfigurationError
from .core.models import DistinguishedName


class CAConfig(BaseModel):
    """Tunables for a two-tier CA.

    Defaults follow the long-standing OpenSSL based setup this engine
    replaces: a 9215 day root, a 7300 day intermediate, 3650 day leaf
    certificates and a CRL valid for 30 days.
    """

    version: str = Field(default="1.0")

    # Key material
    algorithm: Literal["RSA", "EC"] = Field(default="RSA", description="Key algorithm family")
    rsa_ca_key_size: int = Field(default=4096, description="RSA size for CA and OCSP signer keys")
    rsa_leaf_key_size: int = Field(default=2048, description="RSA size for server/user keys")
    ec_curve: str = Field(default="secp384r1", description="Named curve for EC keys")
    key_passphrase: Optional[str] = Field(
        default=None, description="Encrypts stored CA and OCSP signer keys when set"
    )

    # Lifetimes
    root_days: int = Field(default=9215, gt=0)
    intermediate_days: int = Field(default=7300, gt=0)
    cert_days: int = Field(default=3650, gt=0)
    crl_days: int = Field(default=30, gt=0)
    ocsp_response_hours: int = Field(default=24, gt=0)

    # Counters (OpenSSL's serial and crlnumber files start at hex 1000)
    serial_start: int = Field(default=0x1000, gt=0)
    crl_number_start: int = Field(default=0x1000, gt=0)

    # Subject defaults applied beneath every requested subject
    subject_defaults: DistinguishedName = Field(default_factory=DistinguishedName)

    # Revocation pointers embedded in server certificates
    crl_url: Optional[str] = Field(default=None, description="CRL distribution point URL")
    ocsp_url: Optional[str] = Field(default=None, description="OCSP responder URL")

    storage_dir: Optional[Path] = Field(default=None, description="File storage root")

    @field_validator("algorithm", mode="before")
    @classmethod
    def upper_algorithm(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("subject_defaults")
    @classmethod
    def no_default_common_name(cls, v: DistinguishedName) -> DistinguishedName:
        if v.common_name is not None:
            raise ValueError("subject_defaults must not set common_name")
        return v

    @property
    def passphrase_bytes(self) -> Optional[bytes]:
        return self.key_passphrase.encode("utf-8") if self.key_passphrase else None

    def key_params(self, ca: bool) -> dict:
        """Keyword arguments for :func:`generate_keypair`."""
        return {
            "algorithm": self.algorithm,
            "key_size": self.rsa_ca_key_size if ca else self.rsa_leaf_key_size,
            "curve": self.ec_curve,
        }

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "CAConfig":
        """Load configuration from a YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            CAConfig instance

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigurationError(f"Failed to load CA config: {e}") from e

    def save(self, config_path: str | Path) -> None:
        """Save configuration to a YAML file."""
        data = self.model_dump(mode="json", exclude_none=True)
        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
