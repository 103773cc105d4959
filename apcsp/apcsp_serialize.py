from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import yaml

from apcsp.apcsp_datatypes import Program
from apcsp.apcsp_transformer import CspTransformer


# --------------------------
# Helpers
# --------------------------

def detect_format(path: Optional[str | Path] = None, data_hint: Optional[str] = None) -> str:
    """
    Returns 'json' or 'yaml'. Uses the file suffix first, then sniffs the data.
    YAML is the fallback since it also accepts JSON documents.
    """
    if path is not None:
        suffix = Path(path).suffix.lower()
        if suffix == '.json':
            return 'json'
        if suffix in ('.yaml', '.yml'):
            return 'yaml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
    return 'yaml'


def loads(text: str, fmt: Optional[str] = None) -> Any:
    fmt = fmt or detect_format(data_hint=text)
    if fmt == 'json':
        return json.loads(text)
    return yaml.safe_load(text)


# --------------------------
# Program documents
# --------------------------

def program_from_document(document: Any, source: Optional[str] = None) -> Program:
    """
    Builds a Program from a parser-output document:

        statements: [...]
        functions: [...]
        source: "optional program text"
    """
    if not isinstance(document, dict):
        raise ValueError("A program document must be a mapping with 'statements' and 'functions'")
    if source is None:
        source = document.get('source')
    return CspTransformer().transform_program(document, source)


def load_program(path: str | Path, source: Optional[str] = None) -> Program:
    """Reads a JSON or YAML parser-output document from disk."""
    p = Path(path)
    text = p.read_text(encoding='utf-8')
    document = loads(text, detect_format(p, text))
    return program_from_document(document, source)


def loads_program(text: str, fmt: Optional[str] = None, source: Optional[str] = None) -> Program:
    return program_from_document(loads(text, fmt), source)
