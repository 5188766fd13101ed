"""
JSON utilities for reading and durably writing record files.
"""

import json
import os
import tempfile
from typing import Any


def read_json(path: str) -> Any:
    """Read and decode a JSON file.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the content is not valid JSON
    """
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_json_atomic(path: str, data: Any) -> None:
    """Write JSON to `path` through a temp file in the same directory.

    Readers never observe a partially written document. The temp file does not
    carry the `.json` suffix so directory scans ignore it.

    Raises:
        OSError: If the write or the final rename fails
    """
    directory = os.path.dirname(path) or '.'
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
