"""Serial allocation and the certificate ledger of one CA."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional

from ..core.errors import (
    AlreadyRevokedError,
    DuplicateSerialError,
    InvalidInputError,
    NotFoundError,
)
from ..core.models import RevocationReason, SerialRecord
from .storage import StorageBackend

logger = logging.getLogger(__name__)


class SerialReservation:
    """A serial held for one issuance until committed or rolled back."""

    def __init__(self, index: "SerialIndex", serial: int):
        self._index = index
        self.serial = serial
        self.committed = False

    def commit(self, record: SerialRecord) -> None:
        """Append the record for the reserved serial and persist both together."""
        if record.serial != self.serial:
            raise InvalidInputError(
                f"Record serial {record.serial:#x} does not match reservation {self.serial:#x}"
            )
        self._index._append_locked(record)
        self.committed = True


class SerialIndex:
    """Durable serial allocator plus append-only ledger of issued certificates.

    All mutations run under one re-entrant lock and are persisted before
    returning. Records are immutable and the record mapping is replaced,
    never edited, so readers need no lock and never observe a half-applied
    change.
    """

    def __init__(
        self,
        level: str,
        storage: StorageBackend,
        serial_start: int = 0x1000,
        crl_number_start: int = 0x1000,
    ):
        """Initialize an index, loading persisted state when present.

        Args:
            level: CA level this index belongs to ("root" or "intermediate")
            storage: Backend that persists the index document
            serial_start: First serial for a fresh index
            crl_number_start: First CRL number for a fresh index
        """
        self.level = level
        self._storage = storage
        self._lock = threading.RLock()
        self._records: dict[int, SerialRecord] = {}
        self._next_serial = serial_start
        self._crl_number = crl_number_start

        data = storage.load_index(level)
        if data:
            self._load(data)

    def _load(self, data: dict) -> None:
        self._next_serial = int(data["next_serial"])
        self._crl_number = int(data["crl_number"])
        for item in data.get("records", []):
            record = SerialRecord.model_validate(item)
            if record.serial in self._records:
                raise DuplicateSerialError(record.serial)
            self._records[record.serial] = record
        if self._records and self._next_serial <= max(self._records):
            # A counter behind the ledger would hand out an existing serial
            self._next_serial = max(self._records) + 1

    def _persist(self, records: Optional[dict[int, SerialRecord]] = None) -> None:
        if records is None:
            records = self._records
        self._storage.save_index(
            self.level,
            {
                "version": "1.0",
                "next_serial": self._next_serial,
                "crl_number": self._crl_number,
                "records": [
                    r.model_dump(mode="json") for r in sorted(records.values(), key=lambda r: r.serial)
                ],
            },
        )

    @property
    def next_serial(self) -> int:
        return self._next_serial

    @property
    def crl_number(self) -> int:
        return self._crl_number

    def allocate(self) -> int:
        """Hand out the next serial.

        The advanced counter is persisted immediately, so a serial is never
        handed out twice even if its record is never appended (a gap, never
        a collision).
        """
        with self._lock:
            serial = self._next_serial
            self._next_serial += 1
            self._persist()
            logger.debug("Allocated serial %#x from %s index", serial, self.level)
            return serial

    @contextmanager
    def reserve(self) -> Iterator[SerialReservation]:
        """Reserve a serial for one issuance.

        The index lock is held for the whole block, so writers queue behind
        it; readers do not. If the block exits without calling ``commit``
        (including by exception) the counter is rolled back; counter and
        record are persisted in a single save.
        """
        with self._lock:
            serial = self._next_serial
            self._next_serial += 1
            reservation = SerialReservation(self, serial)
            try:
                yield reservation
            finally:
                if not reservation.committed:
                    self._next_serial = serial
                    logger.debug("Rolled back reservation of serial %#x", serial)

    def append(self, record: SerialRecord) -> None:
        """Add a record to the ledger.

        Raises:
            DuplicateSerialError: If the serial is already recorded
        """
        with self._lock:
            self._append_locked(record)

    def _append_locked(self, record: SerialRecord) -> None:
        if record.serial in self._records:
            raise DuplicateSerialError(record.serial)
        records = {**self._records, record.serial: record}
        previous_next = self._next_serial
        if record.serial >= self._next_serial:
            self._next_serial = record.serial + 1
        try:
            self._persist(records)
        except Exception:
            self._next_serial = previous_next
            raise
        self._records = records
        logger.info(
            "Recorded %s certificate %#x for %s in %s index",
            record.cert_class.value,
            record.serial,
            record.subject,
            self.level,
        )

    def revoke(
        self,
        serial: int,
        reason: RevocationReason = RevocationReason.UNSPECIFIED,
        at: Optional[datetime] = None,
    ) -> SerialRecord:
        """Flip a record from valid to revoked.

        Returns:
            The revoked record

        Raises:
            NotFoundError: If the serial was never recorded
            AlreadyRevokedError: If the record is already revoked
        """
        with self._lock:
            record = self._records.get(serial)
            if record is None:
                raise NotFoundError(serial)
            if record.is_revoked:
                raise AlreadyRevokedError(serial)
            revoked = record.revoke(RevocationReason(reason), at or datetime.now(timezone.utc))
            records = {**self._records, serial: revoked}
            self._persist(records)
            self._records = records
            logger.info("Revoked certificate %#x (%s)", serial, revoked.revocation_reason.value)
            return revoked

    def next_crl_number(self) -> int:
        """Consume one CRL number."""
        with self._lock:
            number = self._crl_number
            self._crl_number += 1
            self._persist()
            return number

    # Readers take the current mapping without the lock. Writers never
    # mutate a published mapping; they persist a copy and swap it in.

    def get(self, serial: int) -> Optional[SerialRecord]:
        return self._records.get(serial)

    def find_live(self, identity: str, exclude: Iterable[int] = ()) -> Optional[SerialRecord]:
        """Return the valid record carrying ``identity``, if any.

        Args:
            identity: Common name (compared stripped and casefolded)
            exclude: Serials to skip
        """
        identity = identity.strip().casefold()
        skipped = set(exclude)
        for record in self._records.values():
            if record.serial in skipped:
                continue
            if record.is_live() and record.identity == identity:
                return record
        return None

    def snapshot(self) -> tuple[SerialRecord, ...]:
        """Immutable view of every record, ordered by serial."""
        return tuple(sorted(self._records.values(), key=lambda r: r.serial))

    def revoked(self) -> tuple[SerialRecord, ...]:
        return tuple(r for r in self.snapshot() if r.is_revoked)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, serial: int) -> bool:
        return serial in self._records
