class AllocationInvariantError(Exception):
    """Computed allocations exceed the distributable pool."""

    def __init__(self, allocated: int, pool: int):
        super().__init__(f"Allocated {allocated} base units exceeds pool of {pool}")
        self.allocated = allocated
        self.pool = pool
