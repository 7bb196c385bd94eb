"""Folder bootstrap for the scanner's training and state mailboxes."""

import re
from typing import TYPE_CHECKING

from spamscan.utils.logging import logger

if TYPE_CHECKING:
    from spamscan.imap.client import IMAPClient


def collect_folders_to_create(folders: list[str], delimiter: str) -> list[str]:
    """Expand folder paths into every ancestor path, using the server delimiter.

    Paths may be written with ".", "/" or "\\" as separators.

    Args:
        folders: Folder paths to create.
        delimiter: Hierarchy delimiter of the server.

    Returns:
        Ancestors before descendants, without duplicates.
    """
    to_create: list[str] = []

    for folder in folders:
        current = ""
        for part in re.split(r"[./\\]", folder):
            if not part:
                continue
            current = f"{current}{delimiter}{part}" if current else part
            if current not in to_create:
                to_create.append(current)

    return to_create


def ensure_folders(client: "IMAPClient", folders: list[str]) -> list[str]:
    """Create folders (and their parents) that do not exist yet.

    Returns:
        Folders that were created.
    """
    delimiter = client.folder_delimiter()
    existing = {folder.lower() for folder in client.list_folders()}
    created = []

    for folder in collect_folders_to_create(folders, delimiter):
        if folder.lower() in existing:
            continue
        logger.info(f"Creating folder {folder}")
        client.create_folder(folder)
        created.append(folder)

    if not created:
        logger.debug("All folders already exist")
    return created
