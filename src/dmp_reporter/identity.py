"""Per-installation reporting identity and server description files."""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

TOKEN_FILE = "ReportingToken.txt"
DESCRIPTION_FILE = "ReportingDescription.txt"


@dataclass(frozen=True)
class ReportingIdentity:
    """Stable identity sent with every report.

    Attributes:
        token_hash: Lower-case hex SHA-256 of the persisted token text.
    """

    token_hash: str


def calculate_sha256_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def load_identity(token_path: Path) -> ReportingIdentity:
    """
    Read the identity token, creating it with a random value on first run.

    The hash covers the file contents exactly as stored, so a hand-edited
    token keeps working as long as the file is left alone afterwards.
    """
    token_path = Path(token_path)
    if not token_path.exists():
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(str(uuid.uuid4()), encoding="utf-8")
        logger.info(f"Created new reporting token at {token_path}")
    token_text = token_path.read_bytes().decode("utf-8-sig")
    return ReportingIdentity(token_hash=calculate_sha256_hash(token_text))


def load_description(description_path: Path) -> str:
    """Return the free-text server description, creating an empty file if missing."""
    description_path = Path(description_path)
    if not description_path.exists():
        description_path.parent.mkdir(parents=True, exist_ok=True)
        description_path.write_text("", encoding="utf-8")
    # Line endings are sent exactly as stored
    with open(description_path, encoding="utf-8", newline="") as f:
        return f.read()
