"""REST adapter over MemoryService.

Authentication is handled upstream of this router; every route is keyed by
the scope in its path and passes that scope straight to MemoryService, which
enforces tenant isolation.
"""
