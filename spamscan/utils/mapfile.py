"""Flat-file allow/deny maps, one normalized address per line."""

from pathlib import Path

from spamscan.models.message import MapUpdateResult
from spamscan.utils.logging import logger


def normalize_address(address: str | None) -> str | None:
    """Trim and lower-case an address; None when it is not an address."""
    if not address or not isinstance(address, str):
        return None
    normalized = address.strip().lower()
    if "@" not in normalized:
        return None
    return normalized


class MapStore:
    """Reads and writes map files used by the classifier's allow/deny lists.

    Existing lines, including blank ones, keep their order; new entries are
    only ever appended.
    """

    def __init__(self, path: Path) -> None:
        """Initialize with map file path.

        Args:
            path: Map file location. Parent directories are created on write.
        """
        self.path = Path(path)

    def read_lines(self) -> list[str]:
        """Read all lines of the map file, or none when it does not exist."""
        if not self.path.exists():
            logger.debug(f"Map file {self.path} does not exist, starting empty")
            return []

        content = self.path.read_text(encoding="utf-8")
        if not content.strip():
            return []
        return content.split("\n")

    def read_text(self) -> str | None:
        """Full map file content, or None when it does not exist."""
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def entries(self) -> set[str]:
        """Normalized addresses currently in the map."""
        return {entry for entry in map(normalize_address, self.read_lines()) if entry}

    def _write_lines(self, lines: list[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(lines), encoding="utf-8")
        logger.debug(f"Map file {self.path} written: {sum(1 for l in lines if l.strip())} entries")

    def update(self, addresses: list[str]) -> MapUpdateResult:
        """Append addresses not already present.

        Args:
            addresses: Candidate addresses; invalid ones are ignored.

        Returns:
            MapUpdateResult with added and skipped addresses and the total
            number of distinct entries afterwards.
        """
        lines = self.read_lines()
        existing = {entry for entry in map(normalize_address, lines) if entry}

        added: list[str] = []
        skipped: list[str] = []

        for address in addresses:
            normalized = normalize_address(address)
            if normalized is None:
                continue
            if normalized in existing:
                skipped.append(normalized)
            else:
                added.append(normalized)
                existing.add(normalized)

        if added:
            self._write_lines(lines + added)
            logger.info(
                f"Map {self.path}: {len(added)} added, {len(skipped)} skipped, "
                f"{len(existing)} total"
            )
        else:
            logger.debug(f"Map {self.path}: no new addresses ({len(skipped)} skipped)")

        return MapUpdateResult(added=added, skipped=skipped, total=len(existing))

    def seed(self, addresses: list[str]) -> int:
        """Overwrite the map with the normalized, de-duplicated addresses.

        Input order is preserved.

        Returns:
            Number of entries written.
        """
        unique: list[str] = []
        seen: set[str] = set()

        for address in addresses:
            normalized = normalize_address(address)
            if normalized and normalized not in seen:
                unique.append(normalized)
                seen.add(normalized)

        self._write_lines(unique)
        logger.info(f"Map {self.path} seeded with {len(unique)} entries")
        return len(unique)

    def restore(self, content: str) -> None:
        """Replace the map file with previously backed-up content."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")
        logger.info(f"Map {self.path} restored ({len(content)} bytes)")
