"""
CryptoCGT: capital-gains computation for cryptocurrency ledgers.

The public entry point is `compute_tax_summary`; everything else
(repository, CSV import, HTTP app, reports) is plumbing around it.
"""

from .__about__ import __title__, __version__
from .calc_runner import compute_tax_summary, run_for_user
from .errors import CgtError, ConfigurationError, UnmatchedDisposalError
from .schemas import (
    CalcConfig,
    DisposalEvent,
    MatchingStrategy,
    TaxSummary,
    Transaction,
    TxKind,
    UnmatchedDisposalPolicy,
)

__all__ = [
    "__title__",
    "__version__",
    "compute_tax_summary",
    "run_for_user",
    "CgtError",
    "ConfigurationError",
    "UnmatchedDisposalError",
    "CalcConfig",
    "DisposalEvent",
    "MatchingStrategy",
    "TaxSummary",
    "Transaction",
    "TxKind",
    "UnmatchedDisposalPolicy",
]
