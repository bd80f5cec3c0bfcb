"""
Error types for the LRConsensus core.

Row-level problems (unmapped symbols, malformed complex strings, degenerate
hypergeometric tests) are raised close to where they happen and caught by the
stage that owns the row, which drops it and counts it in its StageReport.
Structural problems (missing columns, empty universe) propagate to the caller.
"""


class LRConsensusError(Exception):
    """Base class for all LRConsensus errors"""


class UnmappedSymbol(LRConsensusError, KeyError):
    """A gene symbol has no entry in the ortholog dictionary"""

    def __init__(self, symbol: str):
        super().__init__(symbol)
        self.symbol = symbol

    def __str__(self) -> str:
        return f"No ortholog mapping for symbol '{self.symbol}'"


class MalformedComplexEncoding(LRConsensusError, ValueError):
    """A complex string could not be split into subunit symbols"""

    def __init__(self, value, separator: str = "_"):
        super().__init__(
            f"Malformed complex encoding {value!r} (separator {separator!r})"
        )
        self.value = value
        self.separator = separator


class DegenerateHypergeometricParameters(LRConsensusError, ValueError):
    """Raised when a hypergeometric test has m = 0 or k = 0"""

    def __init__(self, pathway_size: int, hit_size: int):
        super().__init__(
            f"Undefined hypergeometric test: pathway_size={pathway_size}, "
            f"hit_size={hit_size}"
        )
        self.pathway_size = pathway_size
        self.hit_size = hit_size


class MissingColumnsError(LRConsensusError, ValueError):
    """Required columns or join-key fields are absent from an input table"""

    def __init__(self, missing, where: str = "input"):
        self.missing = sorted(missing)
        super().__init__(f"Missing required columns in {where}: {self.missing}")


class EmptyUniverseError(LRConsensusError, ValueError):
    """The enrichment background contains no annotated genes"""


class EmptyJoinResult(UserWarning):
    """Rank aggregation produced zero rows; join keys probably do not match"""
