"""Reconciliation engine - classifies drift between source and target rosters.

Compares the identity provider's users against the target directory's
entries and produces candidate Change records:

- ``orphan``: present in the target, absent from the source
- ``field_mismatch``: present on both sides with a differing email, name or
  surname
- ``inactive_user``: source account with no credential set, intentionally
  not provisioned downstream

Detection is pure: it reads two in-memory rosters and never touches the
network or the database. Persisting candidates is ChangeStore's job.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from integrations.directory_protocol import SourceUser, TargetUser
from models.change import ChangeType

logger = logging.getLogger(__name__)

ENTITY_USER = "user"

# Source field name -> target attribute it is compared against / written to
FIELD_ATTRIBUTE_MAP: dict[str, str] = {
    "email": "mail",
    "name": "cn",
    "sn": "sn",
}


@dataclass
class ChangeCandidate:
    """A detected drift item, not yet persisted."""

    entity_type: str
    entity_id: str
    change_type: ChangeType
    field_name: str | None = None
    source_value: str | None = None
    target_value: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str, str | None]:
        """Pending-uniqueness key."""
        return (self.entity_type, self.entity_id, self.change_type.value, self.field_name)


@dataclass
class DetectionError:
    """A sub-detector failure; other detectors still contribute output."""

    detector: str
    message: str


@dataclass
class DetectionResult:
    candidates: list[ChangeCandidate] = field(default_factory=list)
    errors: list[DetectionError] = field(default_factory=list)

    def count(self, change_type: ChangeType) -> int:
        return sum(1 for c in self.candidates if c.change_type == change_type)

    def summary(self) -> dict[str, int]:
        return {
            "orphans": self.count(ChangeType.ORPHAN),
            "mismatches": self.count(ChangeType.FIELD_MISMATCH),
            "inactive": self.count(ChangeType.INACTIVE_USER),
            "total": len(self.candidates),
        }


def source_display_name(user: SourceUser) -> str:
    """Display name, falling back to the identifier when blank."""
    if user.display_name and user.display_name.strip():
        return user.display_name
    return user.identifier


def source_surname(user: SourceUser) -> str:
    """Last whitespace-delimited token of the display name, else the identifier."""
    if user.display_name and user.display_name.strip():
        return user.display_name.split()[-1]
    return user.identifier


def source_given_name(user: SourceUser) -> str:
    if user.display_name and user.display_name.strip():
        return user.display_name.split()[0]
    return user.identifier


def expected_target_fields(user: SourceUser) -> dict[str, str | None]:
    """Values the target entry should carry, keyed by source field name."""
    return {
        "email": user.email or None,
        "name": source_display_name(user),
        "sn": source_surname(user),
    }


def compare_fields(user: SourceUser, entry: TargetUser) -> list[tuple[str, str, str]]:
    """List ``(field_name, source_value, target_value)`` for each differing field.

    A field is only compared when both sides carry a value (email) or the
    target carries one (name, sn). Comparison is exact and case-sensitive.
    """
    expected = expected_target_fields(user)
    actual = {"email": entry.mail, "name": entry.cn, "sn": entry.sn}

    diffs = []
    for field_name in ("email", "name", "sn"):
        source_value = expected[field_name]
        target_value = actual[field_name]
        if not source_value or not target_value:
            continue
        if source_value != target_value:
            diffs.append((field_name, source_value, target_value))
    return diffs


class ReconciliationEngine:
    """Pure drift detection over two normalized rosters."""

    def detect(
        self,
        source_users: list[SourceUser],
        target_users: list[TargetUser],
    ) -> DetectionResult:
        """Run every sub-detector and collect candidates and failures.

        Args:
            source_users: Current roster from the source of truth
            target_users: Current roster from the target directory

        Returns:
            DetectionResult with candidates from every detector that
            succeeded and one DetectionError per detector that raised
        """
        result = DetectionResult()
        detectors: list[tuple[str, Callable[[], list[ChangeCandidate]]]] = [
            ("orphans", lambda: self.detect_orphans(source_users, target_users)),
            ("field_mismatches", lambda: self.detect_field_mismatches(source_users, target_users)),
            ("inactive_users", lambda: self.detect_inactive_users(source_users)),
        ]
        for name, detector in detectors:
            try:
                result.candidates.extend(detector())
            except Exception as e:
                logger.warning("Change detector %s failed: %s", name, e, exc_info=True)
                result.errors.append(DetectionError(detector=name, message=str(e)))

        logger.info(
            "Change detection complete: %d orphans, %d mismatches, %d inactive (%d errors)",
            result.count(ChangeType.ORPHAN),
            result.count(ChangeType.FIELD_MISMATCH),
            result.count(ChangeType.INACTIVE_USER),
            len(result.errors),
        )
        return result

    @staticmethod
    def detect_orphans(
        source_users: list[SourceUser],
        target_users: list[TargetUser],
    ) -> list[ChangeCandidate]:
        source_ids = {u.identifier for u in source_users}
        orphans = []
        for entry in target_users:
            if entry.identifier in source_ids:
                continue
            orphans.append(
                ChangeCandidate(
                    entity_type=ENTITY_USER,
                    entity_id=entry.identifier,
                    change_type=ChangeType.ORPHAN,
                    target_value=json.dumps(entry.to_dict(), sort_keys=True),
                    metadata={
                        "dn": entry.dn,
                        "mail": entry.mail,
                        "cn": entry.cn,
                    },
                )
            )
        return orphans

    @staticmethod
    def detect_field_mismatches(
        source_users: list[SourceUser],
        target_users: list[TargetUser],
    ) -> list[ChangeCandidate]:
        targets_by_id = {t.identifier: t for t in target_users}
        mismatches = []
        for user in source_users:
            entry = targets_by_id.get(user.identifier)
            if entry is None:
                continue  # not provisioned yet
            for field_name, source_value, target_value in compare_fields(user, entry):
                mismatches.append(
                    ChangeCandidate(
                        entity_type=ENTITY_USER,
                        entity_id=user.identifier,
                        change_type=ChangeType.FIELD_MISMATCH,
                        field_name=field_name,
                        source_value=source_value,
                        target_value=target_value,
                        metadata={"dn": entry.dn},
                    )
                )
        return mismatches

    @staticmethod
    def detect_inactive_users(source_users: list[SourceUser]) -> list[ChangeCandidate]:
        return [
            ChangeCandidate(
                entity_type=ENTITY_USER,
                entity_id=user.identifier,
                change_type=ChangeType.INACTIVE_USER,
                metadata={
                    "email": user.email,
                    "name": user.display_name,
                    "reason": "No password set in source directory",
                },
            )
            for user in source_users
            if not user.has_credential
        ]
