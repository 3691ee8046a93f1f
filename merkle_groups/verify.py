"""
verify.py - Standalone membership proof verifier.

Runs independently of the registry: a proof carries its leaf, sibling path
and claimed root, and is checked here with nothing else.

Verification modes:
  file <path>               - verify a proof JSON file offline
  member <group> <user_id>  - fetch a proof from the registry, verify it locally

Options:
  --expected-root HEX  also require the proof's root to equal this value
                       (e.g. the root read from the group's name record)
  --check-record       (member mode) compare against the root the registry
                       reports as published for the group

Prints a JSON verdict; exit status 0 on PASS, 1 on FAIL.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

import requests

from .merkle import verify_proof

DEFAULT_GATEWAY = os.getenv("GATEWAY_URL", "http://localhost:8000")


def load_proof(path: str) -> Dict[str, Any]:
    """Read a proof file. Accepts a bare proof or a full /proof API response."""
    with open(path) as f:
        data = json.load(f)
    return data["proof"] if isinstance(data.get("proof"), dict) else data


def fetch_proof(base_url: str, group: str, user_id: str) -> Dict[str, Any]:
    resp = requests.get(f"{base_url}/group/{group}/proof/{user_id}", timeout=15)
    resp.raise_for_status()
    return resp.json()["proof"]


def fetch_published_root(base_url: str, group: str) -> Optional[str]:
    resp = requests.get(f"{base_url}/group/{group}/record", timeout=15)
    resp.raise_for_status()
    return resp.json().get("published_root")


def check(proof: Dict[str, Any], expected_root: Optional[str] = None) -> Dict[str, Any]:
    """Verify a wire-format proof and build the verdict record."""
    try:
        path_ok = verify_proof(proof)
    except (KeyError, TypeError) as exc:
        return {"verdict": "FAIL", "reason": f"malformed proof: {exc}"}

    result: Dict[str, Any] = {
        "leaf": proof["leaf"],
        "root": proof["root"],
        "steps": len(proof["proof"]),
        "path_valid": path_ok,
    }
    if expected_root is not None:
        result["expected_root"] = expected_root
        result["root_match"] = expected_root.lower() == proof["root"]

    if not path_ok:
        result["verdict"], result["reason"] = "FAIL", "sibling path does not reproduce the root"
    elif expected_root is not None and not result["root_match"]:
        result["verdict"], result["reason"] = "FAIL", "proof root differs from expected root"
    else:
        result["verdict"], result["reason"] = "PASS", "proof reproduces the root"
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Merkle membership proof verifier")
    parser.add_argument("mode", choices=["file", "member"], help="Verification mode")
    parser.add_argument("target", nargs="+", help="<path> for 'file'; <group> <user_id> for 'member'")
    parser.add_argument("--expected-root", default=None, help="Root the proof must match")
    parser.add_argument("--gateway", default=DEFAULT_GATEWAY, help="Registry base URL")
    parser.add_argument("--check-record", action="store_true",
                        help="Compare with the root published for the group (member mode)")
    args = parser.parse_args(argv)

    expected = args.expected_root

    if args.mode == "file":
        proof = load_proof(args.target[0])
    else:
        if len(args.target) != 2:
            parser.error("member mode needs: <group> <user_id>")
        group, user_id = args.target
        try:
            proof = fetch_proof(args.gateway, group, user_id)
            if args.check_record and expected is None:
                expected = fetch_published_root(args.gateway, group)
                if expected is None:
                    print(json.dumps({"verdict": "FAIL",
                                      "reason": f"no published root for {group}"}, indent=2))
                    return 1
        except requests.RequestException as exc:
            print(f"Cannot reach registry: {exc}", file=sys.stderr)
            return 1

    result = check(proof, expected)
    print(json.dumps(result, indent=2))
    return 0 if result["verdict"] == "PASS" else 1


if __name__ == "__main__":
    sys.exit(main())
