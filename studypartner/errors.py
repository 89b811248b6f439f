"""
StudyPartner - Error Types
Only caller bugs raise. Degraded results and budget limits never do.
"""


class DecisionContractError(ValueError):
    """A public operation was called with arguments that break its contract."""
