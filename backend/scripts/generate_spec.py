#!/usr/bin/env python
"""Generate the OpenAPI spec JSON.

Usage:
  python -m scripts.generate_spec                       # print sha256 of the spec
  python -m scripts.generate_spec --out backend/openapi.json
  python -m scripts.generate_spec --check backend/openapi.json

Options:
  --out PATH        Write full spec JSON to PATH (directories auto-created)
  --check PATH      Exit 2 if PATH differs from the freshly built spec (CI check)

Exit Codes:
  0 success / in-check mode spec matches
  2 mismatch in --check mode
"""
from __future__ import annotations
import argparse, json, hashlib, pathlib, sys

# Allow running from repo root or backend/ directory
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from ticketops.openapi import build_openapi_spec  # type: ignore  # noqa: E402


def compute_spec_and_hash():
    spec = build_openapi_spec()
    blob = json.dumps(spec, sort_keys=True, separators=(',', ':')).encode()
    return spec, hashlib.sha256(blob).hexdigest()


def render(spec) -> str:
    return json.dumps(spec, indent=2, sort_keys=True) + '\n'


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(description="Generate deterministic OpenAPI spec")
    p.add_argument('--out', dest='out', help='Path to write JSON spec')
    p.add_argument('--check', dest='check', metavar='PATH', help='Compare PATH with the current spec; exit 2 on mismatch')
    args = p.parse_args(argv)

    spec, h = compute_spec_and_hash()

    if args.out:
        out_path = pathlib.Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(render(spec))
        print(f"Wrote spec JSON to {out_path} ({len(json.dumps(spec))} bytes)")

    if args.check:
        committed = pathlib.Path(args.check)
        if not committed.exists() or committed.read_text() != render(spec):
            print(f"Spec out of date: {committed} (current sha256={h})", file=sys.stderr)
            return 2
        print(f"Spec OK: {h}")

    if not args.out and not args.check:
        print(h)

    return 0


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
