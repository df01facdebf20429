"""Comprueba en local que un PDF coincide con su credencial.

    python tools/verify_file.py <cid> <fichero.pdf> [--base-url https://gecorpid.com]

Solo se descarga el hash registrado; el PDF no se envía a ningún sitio.
"""
import argparse
import sys
from pathlib import Path

import httpx

from pdfvc.services.verification import compare_digest


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("cid")
    parser.add_argument("file", type=Path)
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    args = parser.parse_args(argv)

    resp = httpx.get(
        f"{args.base_url.rstrip('/')}/api/public/credential",
        params={"cid": args.cid},
        timeout=10.0,
    )
    if resp.status_code == 404:
        print(f"cid {args.cid} not found", file=sys.stderr)
        return 2
    resp.raise_for_status()
    meta = resp.json()

    with args.file.open("rb") as fh:
        result = compare_digest(fh, meta["sha256"])

    print(f"status:   {meta['status']}")
    print(f"expected: {result.expected}")
    print(f"computed: {result.computed}")
    print("MATCH" if result.match else "NO MATCH")
    return 0 if result.match and meta["status"] == "valid" else 1


if __name__ == "__main__":
    sys.exit(main())
