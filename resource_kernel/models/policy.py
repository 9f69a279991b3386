"""Convergence policy and run configuration."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class ConvergePolicy(BaseModel):
    """
    Per-instance policy consulted by convergence action bodies and the executor.
    Unrecognized options are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    never_remove: bool = False                  # Suppress removal-type sub-actions
    permission_error_acceptable: bool = False   # Downgrade authorization failures to warnings


class RunConfig(BaseModel):
    """Configuration for one reconciliation run."""

    default_policy: ConvergePolicy = ConvergePolicy()
    record_events: bool = True
    ledger_path: Optional[str] = None           # SQLite path; None means no ledger
    stop_on_failure: bool = False               # converge_all stops at the first failure
