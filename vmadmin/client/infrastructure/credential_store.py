"""
Operator credential persistence.
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003

from pydantic import ValidationError

from vmadmin.common.models import Credentials


class FileCredentialStore:
    """Keeps the operator key and target device key in a private JSON file."""

    def __init__(self, file_path: Path):
        self.file_path = file_path

    def load(self) -> Credentials | None:
        """Load saved credentials, or None when nothing is saved."""
        try:
            with self.file_path.open() as f:
                content = f.read()
        except FileNotFoundError:
            return None
        try:
            return Credentials.model_validate_json(content)
        except ValidationError as e:
            msg = f"Invalid credentials file format in {self.file_path}: {e}"
            raise ValueError(msg) from e

    def save(self, credentials: Credentials) -> None:
        """Save credentials readable by the owner only."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.file_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(credentials.model_dump_json())
        self.file_path.chmod(0o600)

    def clear(self) -> None:
        self.file_path.unlink(missing_ok=True)
