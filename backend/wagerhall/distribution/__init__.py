"""Pro-rata distribution of accrued protocol fees."""

from .allocation import (
    Allocation,
    Recipient,
    allocate_pro_rata,
    assert_within_pool,
    build_recipients,
    compute_pool,
)
from .distributor import FeeDistributor, create_fee_distributor
from .exceptions import AllocationInvariantError
from .models import DistributionReport, TransferOutcome

__all__ = [
    "Allocation",
    "Recipient",
    "allocate_pro_rata",
    "assert_within_pool",
    "build_recipients",
    "compute_pool",
    "FeeDistributor",
    "create_fee_distributor",
    "AllocationInvariantError",
    "DistributionReport",
    "TransferOutcome",
]
