"""Fee distribution run state with atomic writes to data/distribution-state.json."""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

logger = logging.getLogger(__name__)


class FeeDistributionState(BaseModel):
    """Last observed fee balance and when it was observed."""

    model_config = ConfigDict(populate_by_name=True)

    last_fee_balance_base: int = Field(
        default=0,
        validation_alias=AliasChoices("lastFeeBalanceBase", "last_fee_balance_base"),
        serialization_alias="lastFeeBalanceBase",
    )
    last_run_timestamp: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "lastRunTimestamp", "lastRunIso", "last_run_timestamp"
        ),
        serialization_alias="lastRunTimestamp",
    )

    @field_validator("last_fee_balance_base", mode="before")
    @classmethod
    def parse_base_units(cls, v: Any) -> int:
        if v is None or v == "":
            return 0
        if isinstance(v, float):
            raise ValueError("lastFeeBalanceBase must be an integer string")
        return int(str(v).strip())

    @field_validator("last_run_timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        if v is None or v == "":
            return None
        if isinstance(v, datetime):
            return v
        return datetime.fromisoformat(str(v).replace("Z", "+00:00"))

    @field_serializer("last_fee_balance_base")
    def serialize_base_units(self, v: int) -> str:
        return str(v)

    @field_serializer("last_run_timestamp")
    def serialize_timestamp(self, v: datetime | None) -> str:
        return v.isoformat() if v else ""

    def advanced_to(self, balance_base: int) -> FeeDistributionState:
        """Copy with a new baseline stamped now."""
        return FeeDistributionState(
            last_fee_balance_base=balance_base,
            last_run_timestamp=datetime.now(timezone.utc),
        )


def load_distribution_state(state_path: Path) -> FeeDistributionState:
    """Load run state; a missing file means a zero baseline.

    A corrupt file raises instead of falling back to zero, since a zero
    baseline would redistribute the entire fee balance.
    """
    if not state_path.exists():
        logger.info(f"State file not found: {state_path}. Starting from zero baseline.")
        return FeeDistributionState()

    try:
        raw = state_path.read_text(encoding="utf-8")
        if not raw.strip():
            logger.warning(f"Empty state file: {state_path}. Starting from zero baseline.")
            return FeeDistributionState()

        state = FeeDistributionState.model_validate(json.loads(raw))
        logger.debug(f"Loaded distribution state from {state_path}")
        return state

    except json.JSONDecodeError as e:
        logger.error(f"Corrupted JSON in state file: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to load distribution state: {e}")
        raise


def save_distribution_state(state: FeeDistributionState, state_path: Path) -> None:
    """Atomically save run state.

    Writes to a temp file in the same directory and renames it over the
    target, so a crash mid-write leaves the previous state intact.
    """
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_dict = state.model_dump(mode="json", by_alias=True)

    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=state_path.parent,
            delete=False,
            suffix=".json",
            encoding="utf-8",
        ) as temp_file:
            json.dump(state_dict, temp_file, indent=2)
            temp_path = Path(temp_file.name)

        shutil.move(str(temp_path), str(state_path))
        logger.debug(f"Saved distribution state to {state_path}")

    except Exception as e:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        logger.error(f"Failed to save distribution state: {e}")
        raise
