"""Durable storage for CA keys, certificates, CRLs and serial indices."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import yaml

from ..core.errors import ConfigurationError


class StorageBackend(ABC):
    """Load/save interface the CA engine needs from its storage layer.

    ``level`` is ``"root"`` or ``"intermediate"``; identity names are
    ``"root"``, ``"intermediate"`` and ``"ocsp"``.
    """

    @abstractmethod
    def load_index(self, level: str) -> Optional[dict]:
        """Return the persisted index document, or None if never saved."""

    @abstractmethod
    def save_index(self, level: str, data: dict) -> None:
        """Persist an index document atomically."""

    @abstractmethod
    def has_identity(self, name: str) -> bool:
        """Whether an identity key or certificate exists under ``name``."""

    @abstractmethod
    def save_key(self, name: str, pem: bytes) -> None:
        pass

    @abstractmethod
    def load_key(self, name: str) -> bytes:
        pass

    @abstractmethod
    def save_identity_cert(self, name: str, pem: bytes) -> None:
        pass

    @abstractmethod
    def load_identity_cert(self, name: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def save_certificate(self, level: str, serial: int, pem: bytes) -> None:
        pass

    @abstractmethod
    def load_certificate(self, level: str, serial: int) -> Optional[bytes]:
        pass

    @abstractmethod
    def save_crl(self, level: str, der: bytes) -> None:
        pass

    @abstractmethod
    def load_crl(self, level: str) -> Optional[bytes]:
        pass


class MemoryStorage(StorageBackend):
    """Dict-backed storage for tests and embedding."""

    def __init__(self):
        self._lock = threading.Lock()
        self._indices: dict[str, dict] = {}
        self._keys: dict[str, bytes] = {}
        self._identity_certs: dict[str, bytes] = {}
        self._certs: dict[tuple[str, int], bytes] = {}
        self._crls: dict[str, bytes] = {}

    def load_index(self, level: str) -> Optional[dict]:
        with self._lock:
            data = self._indices.get(level)
            # Round-trip through YAML so callers never share mutable state
            return yaml.safe_load(yaml.safe_dump(data)) if data is not None else None

    def save_index(self, level: str, data: dict) -> None:
        with self._lock:
            self._indices[level] = yaml.safe_load(yaml.safe_dump(data))

    def has_identity(self, name: str) -> bool:
        return name in self._keys or name in self._identity_certs

    def save_key(self, name: str, pem: bytes) -> None:
        self._keys[name] = pem

    def load_key(self, name: str) -> bytes:
        try:
            return self._keys[name]
        except KeyError:
            raise ConfigurationError(f"No private key stored for {name}") from None

    def save_identity_cert(self, name: str, pem: bytes) -> None:
        self._identity_certs[name] = pem

    def load_identity_cert(self, name: str) -> Optional[bytes]:
        return self._identity_certs.get(name)

    def save_certificate(self, level: str, serial: int, pem: bytes) -> None:
        self._certs[(level, serial)] = pem

    def load_certificate(self, level: str, serial: int) -> Optional[bytes]:
        return self._certs.get((level, serial))

    def save_crl(self, level: str, der: bytes) -> None:
        self._crls[level] = der

    def load_crl(self, level: str) -> Optional[bytes]:
        return self._crls.get(level)


class FileStorage(StorageBackend):
    """Directory-backed storage.

    Layout::

        <base>/root/{certs,private,crl}/ + index.yaml
        <base>/intermediate/{certs,private,crl}/ + index.yaml

    The OCSP signer identity lives beside the intermediate that issued it.
    """

    _IDENTITY_LEVEL = {"root": "root", "intermediate": "intermediate", "ocsp": "intermediate"}

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        for level in ("root", "intermediate"):
            level_dir = self.base_dir / level
            for sub in ("certs", "crl"):
                (level_dir / sub).mkdir(parents=True, exist_ok=True)
            private = level_dir / "private"
            private.mkdir(parents=True, exist_ok=True)
            os.chmod(private, 0o700)

    def _level_dir(self, level: str) -> Path:
        if level not in ("root", "intermediate"):
            raise ConfigurationError(f"Unknown CA level: {level}")
        return self.base_dir / level

    def _identity_paths(self, name: str) -> tuple[Path, Path]:
        try:
            level_dir = self._level_dir(self._IDENTITY_LEVEL[name])
        except KeyError:
            raise ConfigurationError(f"Unknown CA identity: {name}") from None
        stem = "ca" if name == "root" else ("intermediate.ocsp" if name == "ocsp" else name)
        return level_dir / "private" / f"{stem}.key.pem", level_dir / "certs" / f"{stem}.cert.pem"

    @staticmethod
    def _atomic_write(path: Path, data: bytes, mode: Optional[int] = None) -> None:
        """Write via a temp file in the same directory and rename over the target."""
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if mode is not None:
                os.chmod(tmp, mode)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def load_index(self, level: str) -> Optional[dict]:
        path = self._level_dir(level) / "index.yaml"
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Corrupt index {path}: {e}") from e

    def save_index(self, level: str, data: dict) -> None:
        path = self._level_dir(level) / "index.yaml"
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
        self._atomic_write(path, text.encode("utf-8"))

    def has_identity(self, name: str) -> bool:
        key_path, cert_path = self._identity_paths(name)
        return key_path.exists() or cert_path.exists()

    def save_key(self, name: str, pem: bytes) -> None:
        key_path, _ = self._identity_paths(name)
        self._atomic_write(key_path, pem, mode=0o400)

    def load_key(self, name: str) -> bytes:
        key_path, _ = self._identity_paths(name)
        if not key_path.exists():
            raise ConfigurationError(f"No private key stored for {name}")
        return key_path.read_bytes()

    def save_identity_cert(self, name: str, pem: bytes) -> None:
        _, cert_path = self._identity_paths(name)
        self._atomic_write(cert_path, pem, mode=0o444)

    def load_identity_cert(self, name: str) -> Optional[bytes]:
        _, cert_path = self._identity_paths(name)
        return cert_path.read_bytes() if cert_path.exists() else None

    def save_certificate(self, level: str, serial: int, pem: bytes) -> None:
        path = self._level_dir(level) / "certs" / f"{serial:X}.pem"
        self._atomic_write(path, pem, mode=0o444)

    def load_certificate(self, level: str, serial: int) -> Optional[bytes]:
        path = self._level_dir(level) / "certs" / f"{serial:X}.pem"
        return path.read_bytes() if path.exists() else None

    def save_crl(self, level: str, der: bytes) -> None:
        path = self._level_dir(level) / "crl" / f"{level}.crl.der"
        self._atomic_write(path, der)

    def load_crl(self, level: str) -> Optional[bytes]:
        path = self._level_dir(level) / "crl" / f"{level}.crl.der"
        return path.read_bytes() if path.exists() else None
