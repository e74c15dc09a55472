"""Check that plugin-side code keeps stdout for the handshake line only."""

from __future__ import annotations

from pathlib import Path

from plughost.handshake.stdout_guard import collect_stdout_violations


def main() -> int:
    repo_root = Path(__file__).resolve().parents[1]
    roots = [repo_root / "plughost" / "handshake", repo_root / "examples"]
    violations: list[str] = []
    for root in roots:
        if root.exists():
            violations.extend(f"{root.relative_to(repo_root).as_posix()}/{row}" for row in collect_stdout_violations(root))
    if not violations:
        print("stdout-hygiene-check: ok")
        return 0
    print("stdout-hygiene-check: violations detected")
    for row in violations:
        print(f"- {row}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
