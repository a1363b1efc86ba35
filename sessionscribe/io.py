"""
sessionscribe.io - Atomic artifact writes and JSON documents.

Every file sessionscribe leaves in a session directory (manifest,
transcripts, recovery report) is written through atomic_open, so an
interrupted run leaves either the previous file or the new one.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, TypeVar

from sessionscribe.models import CamelModel

DocumentT = TypeVar("DocumentT", bound=CamelModel)


@contextmanager
def atomic_open(path: Path) -> Iterator[IO[str]]:
    """Open a hidden sibling temp file that replaces ``path`` on clean exit.

    On any error the temp file is removed and ``path`` is left untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yield f
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> dict[str, Any]:
    """Read a UTF-8 JSON file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    with atomic_open(path) as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)


def write_text(path: Path, content: str) -> None:
    with atomic_open(path) as f:
        f.write(content)


def read_document(path: Path, model: type[DocumentT]) -> DocumentT:
    """Load a camelCase JSON document (manifest, transcript) into its model.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
        pydantic.ValidationError: If the document doesn't fit the model
    """
    return model.model_validate(read_json(path))


def write_document(path: Path, document: CamelModel) -> None:
    """Write a model in its camelCase wire form."""
    write_json(path, document.to_json_dict())
