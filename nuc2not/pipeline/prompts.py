"""
Manual upload prompts.

Notion's public API cannot ingest files, so every media placeholder has to be
replaced by hand. The migrator hands each one to a prompter.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional


class ManualUploadPrompter(ABC):
    """
    Receives one request per media file that needs a manual upload.
    """

    @abstractmethod
    def prompt(self, destination_page_id: str, local_file_path: Optional[str], suggested_placement: str) -> None:
        """
        Ask for a file to be uploaded into a destination page.

        Args:
            destination_page_id: Page holding the placeholder
            local_file_path: Cached copy of the file, None when it was never downloaded
            suggested_placement: Where on the page the file belongs
        """
        pass


class ConsolePrompter(ManualUploadPrompter):
    """Prints each request and waits for the operator to press Enter."""

    def __init__(self, output: Callable[[str], None] = print, wait: Callable[[str], str] = input):
        self._output = output
        self._wait = wait

    def prompt(self, destination_page_id: str, local_file_path: Optional[str], suggested_placement: str) -> None:
        self._output("")
        self._output(f"📎 Manual upload needed for page {destination_page_id}")
        if local_file_path:
            self._output(f"   File:  {local_file_path}")
        else:
            self._output("   File:  not in the cache; download it from the source workspace")
        self._output(f"   Place: {suggested_placement}")
        self._wait("   Press Enter once uploaded...")


class LoggingPrompter(ManualUploadPrompter):
    """Logs each request without waiting, for unattended runs."""

    def __init__(self):
        self.requests = []

    def prompt(self, destination_page_id: str, local_file_path: Optional[str], suggested_placement: str) -> None:
        self.requests.append((destination_page_id, local_file_path, suggested_placement))
        logging.info(
            f"Manual upload needed: page={destination_page_id} "
            f"file={local_file_path or '(not cached)'} placement={suggested_placement}"
        )
