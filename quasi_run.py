import sys
from pathlib import Path

import yaml

from quasi.quasi_runtime import Session
from quasi.quasi_printer import Printer


def load_document(path: Path) -> dict:
    """Reads a YAML (or JSON, which YAML accepts) evaluation document.

    Expected keys: `expr` (tagged parser output), optional `data` (column
    name -> values) and optional `bindings` (global variables).
    """
    doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(doc, dict) or 'expr' not in doc:
        raise ValueError(f"{path}: expected a mapping with an 'expr' key")
    return doc


def run_document_file(file_path: str) -> int:
    """Evaluate one document file and print the result; returns the exit status."""
    p = Path(file_path)
    try:
        doc = load_document(p)
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    except (yaml.YAMLError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    session = Session()
    for name, value in (doc.get('bindings') or {}).items():
        session.global_env[name] = value
    result = session.run(doc['expr'], data=doc.get('data'))
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    if result.value is not None:
        print(Printer().pformat(result.value))
    return 0


def main():
    """Evaluate each document named on the command line."""
    if len(sys.argv) < 2:
        print("usage: quasi-run FILE [FILE ...]", file=sys.stderr)
        raise SystemExit(2)
    status = 0
    for arg in sys.argv[1:]:
        status = run_document_file(arg) or status
    raise SystemExit(status)


if __name__ == "__main__":
    main()
