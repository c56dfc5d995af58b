"""Numbered plan backups.

Backups live next to the plan file as ``<planfile>.bak.<N>``. The backup is
always written before the live file is touched, and N is never reused.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def fingerprint_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: Path) -> str:
    """SHA-256 of a file's content, or "" if it cannot be read."""
    try:
        return fingerprint_bytes(Path(path).read_bytes())
    except OSError:
        return ""


@dataclass
class PlanVersion:
    """A numbered backup of the plan file."""

    version: int
    timestamp: datetime
    trigger: str
    path: Path
    hash: str

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "trigger": self.trigger,
            "path": str(self.path),
        }


class PlanVersioner:
    """Creates, lists and restores numbered plan backups."""

    def __init__(self, plan_path: Path):
        self.plan_path = Path(plan_path)
        self._versions: list[PlanVersion] = []
        self._backup_re = re.compile(rf"^{re.escape(self.plan_path.name)}\.bak\.(\d+)$")

    def backup_path(self, version: int) -> Path:
        return self.plan_path.with_name(f"{self.plan_path.name}.bak.{version}")

    @property
    def versions(self) -> list[PlanVersion]:
        return list(self._versions)

    @property
    def latest_version(self) -> PlanVersion | None:
        return self._versions[-1] if self._versions else None

    def get_version(self, version: int) -> PlanVersion | None:
        for v in self._versions:
            if v.version == version:
                return v
        return None

    def _next_version(self) -> int:
        return max((v.version for v in self._versions), default=0) + 1

    def discover_backups(self) -> int:
        """Pick up backups left by earlier runs. Returns how many were found."""
        directory = self.plan_path.parent
        if not directory.is_dir():
            return 0

        known = {v.version for v in self._versions}
        found = 0
        for candidate in directory.iterdir():
            match = self._backup_re.match(candidate.name)
            if not match or not candidate.is_file():
                continue
            version = int(match.group(1))
            if version in known:
                continue
            try:
                data = candidate.read_bytes()
                mtime = candidate.stat().st_mtime
            except OSError as e:
                logger.warning("Skipping unreadable backup %s: %s", candidate, e)
                continue
            self._versions.append(
                PlanVersion(
                    version=version,
                    timestamp=datetime.fromtimestamp(mtime),
                    trigger="",
                    path=candidate,
                    hash=fingerprint_bytes(data),
                )
            )
            found += 1

        self._versions.sort(key=lambda v: v.version)
        if found:
            logger.debug("Discovered %d existing backup(s) of %s", found, self.plan_path)
        return found

    def create_backup(self, trigger: str) -> Path:
        """Back up the live plan file.

        Content that is already backed up is not written again; the existing
        backup's path is returned instead.

        Raises:
            OSError: If the plan file cannot be read or the backup written.
        """
        data = self.plan_path.read_bytes()
        digest = fingerprint_bytes(data)

        for v in self._versions:
            if v.hash == digest:
                logger.debug("Plan content already backed up as version %d", v.version)
                return v.path

        version = self._next_version()
        path = self.backup_path(version)
        path.write_bytes(data)

        self._versions.append(
            PlanVersion(
                version=version,
                timestamp=datetime.now(),
                trigger=trigger,
                path=path,
                hash=digest,
            )
        )
        logger.info("Backed up plan to %s", path)
        return path

    def restore_version(self, version: int) -> None:
        """Copy backup ``version`` over the live plan file byte-for-byte.

        Raises:
            ValueError: If no such version exists.
            OSError: If the backup cannot be read or the plan written.
        """
        v = self.get_version(version)
        if v is None:
            raise ValueError(f"invalid version number: {version}")

        self.plan_path.write_bytes(v.path.read_bytes())
        logger.info("Restored plan from version %d", version)
