from collections.abc import Iterator
from pathlib import Path


def iter_jsonl_lines(file_path: str | Path) -> Iterator[str]:
    """Yield the non-blank lines of a JSONL file, without their line endings

    Args:
        file_path (str | Path): The path to the file to read
    """
    with open(file_path, "r") as f:
        for line in f:
            stripped = line.strip()
            if stripped:
                yield stripped
