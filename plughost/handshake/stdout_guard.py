"""Static check that plugin-side code never writes to stdout outside the announcer."""

from __future__ import annotations

import ast
from pathlib import Path

ALLOWED_MODULES = ("handshake/announce.py",)

_STDOUT_NAMES = {"stdout", "__stdout__"}
_WRITE_METHODS = {"write", "writelines"}


def _is_sys_stdout(node: ast.AST) -> bool:
    return (
        isinstance(node, ast.Attribute)
        and node.attr in _STDOUT_NAMES
        and isinstance(node.value, ast.Name)
        and node.value.id == "sys"
    )


def _call_violation(node: ast.Call) -> str | None:
    func = node.func
    if isinstance(func, ast.Name) and func.id == "print":
        target = next((kw.value for kw in node.keywords if kw.arg == "file"), None)
        if target is None:
            return "print-to-stdout"
        if _is_sys_stdout(target):
            return "print-to-stdout"
        return None
    if isinstance(func, ast.Attribute):
        if func.attr in _WRITE_METHODS and _is_sys_stdout(func.value):
            return f"stdout-{func.attr}"
        if (
            func.attr == "write"
            and isinstance(func.value, ast.Name)
            and func.value.id == "os"
            and node.args
            and isinstance(node.args[0], ast.Constant)
            and node.args[0].value == 1
        ):
            return "fd1-write"
    return None


def _is_python_source(path: Path) -> bool:
    if not path.is_file():
        return False
    if path.suffix == ".py":
        return True
    if path.suffix:
        return False
    try:
        with path.open("rb") as fh:
            first = fh.readline(128)
    except OSError:
        return False
    return first.startswith(b"#!") and b"python" in first


def collect_stdout_violations(root: Path, *, allowed: tuple[str, ...] = ALLOWED_MODULES) -> list[str]:
    """Return `path:line kind` rows for every stdout write under `root` outside `allowed`."""
    base = root.resolve()
    files = [base] if base.is_file() else sorted(p for p in base.rglob("*") if _is_python_source(p))
    violations: list[str] = []
    for file_path in files:
        resolved = file_path.resolve()
        rel_path = resolved.name if base.is_file() else resolved.relative_to(base).as_posix()
        if any(resolved.as_posix().endswith(suffix) for suffix in allowed):
            continue
        try:
            tree = ast.parse(resolved.read_text(encoding="utf-8"), filename=str(resolved))
        except SyntaxError as exc:
            violations.append(f"{rel_path}:{exc.lineno or 0} parse-error: {exc.msg}")
            continue
        for node in ast.walk(tree):
            if isinstance(node, ast.Call):
                kind = _call_violation(node)
                if kind:
                    violations.append(f"{rel_path}:{node.lineno} {kind}")
    return violations
