import numpy as np
import pandas as pd

from typing import NamedTuple, Optional

from phylogeny import Phylogeny, support_value

class ConfidenceReport(NamedTuple):
    count : int
    total : float
    mean : Optional[float]

def average_confidence(phylo : Phylogeny) -> ConfidenceReport:
    """
    Computes the number, sum and mean of the numeric support values
    of internal nodes (the root included). The tree is not modified.
    If no internal node carries a numeric label, `mean` is None.
    """
    values = [support_value(phylo.tree, n) for n in phylo.internal_nodes()]
    values = np.array([v for v in values if v is not None], dtype=float)
    if values.size == 0:
        return ConfidenceReport(count=0, total=0.0, mean=None)
    return ConfidenceReport(count=int(values.size), total=float(values.sum()), mean=float(values.mean()))

def format_report(fname, report : ConfidenceReport) -> str:
    if report.mean is None:
        return f"{fname} analyzed.\n  No scored nodes."
    return (
        f"{fname} analyzed.\n"
        f"  Number of nodes: {report.count}.\n"
        f"  Total score: {report.total:.15g}.\n"
        f"  Average score: {report.mean:.3f}."
    )

def summarize_reports(reports) -> pd.DataFrame:
    """Builds one row per file from (fname, ConfidenceReport) pairs."""
    rows = []
    for fname, report in reports:
        rows.append({
            "file": str(fname),
            "num_nodes": report.count,
            "total_score": report.total,
            "average_score": report.mean
        })
    return pd.DataFrame(rows, columns=["file", "num_nodes", "total_score", "average_score"])
