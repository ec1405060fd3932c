"""Save and load setup documents as JSON files."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from mashumaro.exceptions import InvalidFieldValue, MissingField

from .errors import SetupFileError, ValidationError
from .mirror import conform_setup
from .settings import SETUP_VERSION, SetupDocument

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


def save_setup(doc: SetupDocument, path: PathLike) -> None:
    p = Path(path)
    try:
        p.write_text(json.dumps(doc.to_dict(), indent=2), encoding="utf-8")
    except OSError as e:
        raise SetupFileError(f"cannot write setup to {p}: {e}") from e
    log.info("Setup saved to %s", p)


def load_setup(path: PathLike) -> SetupDocument:
    """Read a document written by save_setup(). Raises SetupFileError.

    Settings are checked the way a push checks them, see mirror.conform().
    A value the instrument does not offer makes the whole file invalid.
    """
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise SetupFileError(f"cannot read setup from {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise SetupFileError(f"{p} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SetupFileError(f"{p} does not contain a setup object")
    try:
        doc = SetupDocument.from_dict(data)
    except (MissingField, InvalidFieldValue, ValueError, TypeError, AttributeError) as e:
        raise SetupFileError(f"{p} is not a valid setup: {e}") from e
    try:
        doc = conform_setup(doc)
    except ValidationError as e:
        raise SetupFileError(f"{p} holds a setting the instrument cannot take: {e}") from e
    if doc.version != SETUP_VERSION:
        log.warning("%s has setup version %s, expected %s", p, doc.version, SETUP_VERSION)
    log.info("Setup loaded from %s (version %s, saved %s)", p, doc.version, doc.timestamp)
    return doc
