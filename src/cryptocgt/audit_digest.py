# audit_digest.py
from __future__ import annotations
import json, hashlib
from decimal import Decimal
from typing import Any, Dict, Iterable

from .schemas import CalcConfig, TaxSummary, Transaction, to_naive_utc


def _dec_to_str(x: Decimal) -> str:
    s = format(x, 'f')
    return s.rstrip('0').rstrip('.') if '.' in s else s


def _json_c14n(obj: Any) -> str:
    """
    Canonical JSON dump:
      - sort keys
      - no spaces (compact separators)
      - decimals rendered as plain strings (400.0 and 400 hash the same)
    """
    def normalize(o: Any):
        if isinstance(o, dict):
            return {k: normalize(o[k]) for k in sorted(o.keys())}
        elif isinstance(o, list):
            return [normalize(v) for v in o]
        elif isinstance(o, Decimal):
            return _dec_to_str(o)
        else:
            return o
    return json.dumps(normalize(obj), sort_keys=True, separators=(",", ":"))


def _sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def build_manifest(
    transactions: Iterable[Transaction], cfg: CalcConfig, summary: TaxSummary
) -> Dict[str, Any]:
    """
    Canonical record of one computation:
      - params: exemption, rate, strategy, policy
      - inputs: transactions in the order the engine processes them
      - outputs: the summary (totals, events with per-lot matches, warnings)
    """
    ordered = sorted(transactions, key=lambda t: to_naive_utc(t.occurred_at))
    return {
        "params": cfg.model_dump(mode="json"),
        "inputs": [t.model_dump(mode="json") for t in ordered],
        "outputs": summary.model_dump(mode="json"),
    }


def compute_digests(manifest: Dict[str, Any]) -> Dict[str, str]:
    """
    Compute:
      - input_hash: hash over params + input transactions
      - output_hash: hash over the summary
      - manifest_hash: hash over the full manifest
    Recomputing the same ledger with the same params yields the same three hashes.
    """
    inputs_part = {"params": manifest["params"], "inputs": manifest["inputs"]}
    return {
        "input_hash": _sha256_hex(_json_c14n(inputs_part)),
        "output_hash": _sha256_hex(_json_c14n(manifest["outputs"])),
        "manifest_hash": _sha256_hex(_json_c14n(manifest)),
    }
