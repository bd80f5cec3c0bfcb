"""
Reproducibility Logger for the LRConsensus pipeline

Tracks what every stage did to the data and the metadata needed to rerun it:
- Per-stage row counts and drop reasons (StageReport)
- Software and dependency versions
- Hashes of the resource, ortholog dictionary and annotation inputs
- Stage parameters and warnings
"""

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Iterable, List, Optional
from dataclasses import dataclass, asdict, field
from pathlib import Path


# Package version (should match __init__.py)
__version__ = "0.3.0"

logger = logging.getLogger("LRConsensus.Repro")


@dataclass(frozen=True)
class StageReport:
    """Row accounting for one pipeline stage"""

    stage: str
    input_rows: int
    output_rows: int
    dropped_rows: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)

    def summary(self) -> str:
        text = f"{self.stage}: {self.input_rows} -> {self.output_rows} rows"
        if self.dropped_rows:
            reasons = ", ".join(f"{k}={v}" for k, v in sorted(self.reasons.items()))
            text += f" ({self.dropped_rows} dropped: {reasons})"
        return text


def summarize_reports(reports: Iterable[StageReport]) -> Dict[str, int]:
    """Dropped row count per stage, in stage order"""
    totals: Dict[str, int] = {}
    for report in reports:
        totals[report.stage] = totals.get(report.stage, 0) + report.dropped_rows
    return totals


@dataclass
class PipelineMetadata:
    """Complete metadata for a single pipeline run"""

    # Unique identifiers
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    # Software versions
    software_version: str = __version__
    python_version: str = ""
    dependencies: Dict[str, str] = field(default_factory=dict)

    # Input fingerprints
    input_hashes: Dict[str, str] = field(default_factory=dict)

    # Parameters per stage
    parameters: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Row accounting
    stage_reports: List[Dict[str, Any]] = field(default_factory=list)

    # Output summary
    output_summary: Dict[str, Any] = field(default_factory=dict)

    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, output_path: Path):
        """Save metadata to JSON file"""
        with open(output_path, 'w') as f:
            f.write(self.to_json())
        logger.info(f"Saved pipeline metadata to {output_path}")


def hash_records(items: Iterable[str]) -> str:
    """
    SHA256 of the sorted string items, shortened to 16 hex characters.

    Sorting makes the hash independent of input order.
    """
    content = "||".join(sorted(items))
    return hashlib.sha256(content.encode()).hexdigest()[:16]


class ReproducibilityLogger:
    """
    Logger for tracking reproducibility metadata during a pipeline run.
    """

    def __init__(self):
        self.metadata = PipelineMetadata()
        self._initialize_versions()

    def _initialize_versions(self):
        """Detect and record software versions"""
        self.metadata.python_version = (
            f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        )

        import numpy
        import pandas
        import scipy
        import statsmodels

        self.metadata.dependencies = {
            'numpy': numpy.__version__,
            'pandas': pandas.__version__,
            'scipy': scipy.__version__,
            'statsmodels': statsmodels.__version__,
        }

    def set_input_hash(self, name: str, items: Iterable[str]):
        """Record a fingerprint of an input (resource rows, dictionary pairs, ...)"""
        self.metadata.input_hashes[name] = hash_records(items)

    def set_parameters(self, stage: str, **params):
        """Record the parameters a stage ran with"""
        self.metadata.parameters.setdefault(stage, {}).update(params)

    def add_stage_reports(self, reports: Iterable[StageReport]):
        """Append stage reports not already recorded"""
        seen = {json.dumps(r, sort_keys=True, default=str) for r in self.metadata.stage_reports}
        for report in reports:
            entry = report.to_dict()
            key = json.dumps(entry, sort_keys=True, default=str)
            if key in seen:
                continue
            seen.add(key)
            self.metadata.stage_reports.append(entry)
            logger.info(report.summary())

    def set_output_summary(self, **summary):
        self.metadata.output_summary.update(summary)

    def add_warning(self, warning: str):
        """Add a warning message"""
        self.metadata.warnings.append(warning)
        logger.warning(f"Pipeline warning: {warning}")

    def get_metadata(self) -> PipelineMetadata:
        return self.metadata

    def export_json(self, output_path: Path):
        self.metadata.save(output_path)


def create_pipeline_metadata(stage_reports: Optional[Iterable[StageReport]] = None,
                             **parameters) -> PipelineMetadata:
    """
    Quick metadata creation.

    Args:
        stage_reports: Reports collected from stage outputs
        **parameters: Stage name -> parameter dict

    Returns:
        PipelineMetadata object
    """
    repro = ReproducibilityLogger()
    for stage, params in parameters.items():
        repro.set_parameters(stage, **params)
    if stage_reports:
        repro.add_stage_reports(stage_reports)
    return repro.get_metadata()
