import argparse
import math
import os
import sys

from dataclasses import dataclass
from multiprocessing import Pool
from typing import NamedTuple, Optional

from loguru import logger
from tqdm import tqdm

import transforms
import metrics

from collapse import collapse
from phylogeny import NEWICK, NEXUS, Phylogeny, AfterPhyloError, StageError, UnrecognizedFormatError
from treeio import read_tree_file, read_annotation_table, save_tree

"""
AfterPhylo: manipulating trees after phylogenetic reconstruction.

Each input tree (Newick or Nexus, as written by RAxML, PhyML, MrBayes,
BEAST and similar programs) is parsed, passed through the requested
stages in a fixed order and saved next to the input as
<name>.out.<ext>:

    scale -> unlabeled -> topology -> simplify -> confonly -> format
          -> average -> collapse -> annotate

Requesting -average reports the mean confidence value of each tree
instead of saving it.
"""

@dataclass(frozen=True)
class PipelineConfig:
    convert : Optional[str] = None
    annotate : Optional[str] = None
    replace : bool = False
    scale : Optional[float] = None
    topology : bool = False
    unlabeled : bool = False
    confonly : bool = False
    average : bool = False
    collapse : Optional[float] = None
    simplify : bool = False

    def __post_init__(self):
        if self.convert is not None and self.convert not in (NEWICK, NEXUS):
            raise ValueError(f"Unknown output format '{self.convert}'; expected newick or nexus.")
        if self.scale is not None and (not math.isfinite(self.scale) or self.scale == 0):
            raise ValueError(f"Scale factor must be a finite non-zero number, got {self.scale}.")
        if self.collapse is not None and not math.isfinite(self.collapse):
            raise ValueError(f"Collapse threshold must be a finite number, got {self.collapse}.")
        if self.replace and self.annotate is None:
            logger.warning("-replace has no effect without -annotate.")

class FileResult(NamedTuple):
    fname : str
    status : str
    outfile : Optional[str] = None
    report : Optional[metrics.ConfidenceReport] = None

class Pipeline:
    def __init__(self, config : PipelineConfig):
        self.config = config
        self.names = None
        if config.annotate is not None:
            self.names = read_annotation_table(config.annotate, config.replace)

    def editing_stages(self):
        c = self.config
        if c.scale is not None:
            yield "scale", lambda p: transforms.scale(p, c.scale)
        if c.unlabeled:
            yield "unlabeled", transforms.strip_labels
        if c.topology:
            yield "topology", transforms.strip_lengths
        if c.simplify:
            yield "simplify", transforms.simplify_lengths
        if c.confonly:
            yield "confonly", transforms.confidence_only
        if c.convert is not None:
            yield "format", lambda p: transforms.convert_format(p, c.convert)

    def restructuring_stages(self):
        c = self.config
        if c.collapse is not None:
            yield "collapse", lambda p: collapse(p, c.collapse)
        if self.names is not None:
            yield "annotate", lambda p: transforms.annotate_tips(p, self.names)

    def apply(self, stage, func, phylo, fname):
        try:
            return func(phylo)
        except (AfterPhyloError, ValueError) as e:
            raise StageError(fname, stage, e) from e

    def run(self, phylo : Phylogeny, fname="<tree>"):
        """
        Applies the configured stages to `phylo` in place. Returns the
        tree and, if averaging was requested, its ConfidenceReport; in
        that case the stages after the report are not applied.
        """
        for stage, func in self.editing_stages():
            self.apply(stage, func, phylo, fname)

        if self.config.average:
            return phylo, self.apply("average", metrics.average_confidence, phylo, fname)

        for stage, func in self.restructuring_stages():
            self.apply(stage, func, phylo, fname)
        return phylo, None

    def process_file(self, fname) -> FileResult:
        try:
            return self.process(fname)
        except Exception as e:
            logger.exception(f"{fname}: unexpected error: {e}")
            return FileResult(fname, "failed")

    def process(self, fname) -> FileResult:
        try:
            phylo = read_tree_file(fname)
        except UnrecognizedFormatError as e:
            logger.warning(f"The format of {fname} is unrecognizable: {e}")
            return FileResult(fname, "skipped")
        except (AfterPhyloError, OSError) as e:
            logger.error(f"{fname}: read failed: {e}")
            return FileResult(fname, "failed")

        try:
            phylo, report = self.run(phylo, fname)
        except StageError as e:
            logger.error(str(e))
            return FileResult(fname, "failed")

        if report is not None:
            return FileResult(fname, "analyzed", report=report)

        try:
            outfile = save_tree(phylo, fname)
        except OSError as e:
            logger.error(f"{fname}: save failed: {e}")
            return FileResult(fname, "failed")

        logger.info(f"{fname} was processed and saved as {outfile}.")
        return FileResult(fname, "saved", outfile=str(outfile))

def run_batch(pipeline : Pipeline, fnames, jobs : int = 1):
    if jobs <= 1 or len(fnames) <= 1:
        return [pipeline.process_file(f) for f in fnames]

    with Pool(jobs) as p:
        return list(tqdm(p.imap(pipeline.process_file, fnames), total=len(fnames)))

def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Manipulate trees after phylogenetic reconstruction."
    )
    p.add_argument("trees", nargs="+", help="Tree files in Newick or Nexus format.")
    p.add_argument("-format", "--format", dest="convert", type=str.lower, choices=[NEWICK, NEXUS],
                   help="Convert tree format to Newick or Nexus.")
    p.add_argument("-annotate", "--annotate",
                   help="Annotation table (ID<tab>name per line); appends names to tip labels.")
    p.add_argument("-replace", "--replace", action="store_true",
                   help="Replace IDs by names instead of appending (with -annotate).")
    p.add_argument("-scale", "--scale", type=float, help="Multiply branch lengths by this factor.")
    p.add_argument("-topology", "--topology", action="store_true", help="Remove branch lengths.")
    p.add_argument("-unlabeled", "--unlabeled", action="store_true",
                   help="Remove node labels (confidence values and bracketed annotations).")
    p.add_argument("-confonly", "--confonly", action="store_true",
                   help="Keep only confidence values from complex node annotations.")
    p.add_argument("-average", "--average", action="store_true",
                   help="Report the average confidence value instead of saving trees.")
    p.add_argument("-collapse", "--collapse", type=float,
                   help="Collapse nodes with confidence value below this threshold.")
    p.add_argument("-simplify", "--simplify", action="store_true",
                   help="Write branch lengths with six digits after the decimal point.")
    p.add_argument("-j", "--jobs", type=int, default=1, help="Number of files processed in parallel.")
    p.add_argument("--summary", help="Write average confidence values of all trees to this CSV file.")
    p.add_argument("-v", "--verbose", action="store_true", help="Log debug messages.")
    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    for fname in args.trees:
        if not os.path.exists(fname):
            logger.error(f"File {fname} does not exist.")
            sys.exit(1)

    try:
        config = PipelineConfig(
            convert=args.convert,
            annotate=args.annotate,
            replace=args.replace,
            scale=args.scale,
            topology=args.topology,
            unlabeled=args.unlabeled,
            confonly=args.confonly,
            average=args.average,
            collapse=args.collapse,
            simplify=args.simplify
        )
        pipeline = Pipeline(config)
    except (AfterPhyloError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)

    results = run_batch(pipeline, args.trees, args.jobs)

    reports = [(r.fname, r.report) for r in results if r.report is not None]
    for fname, report in reports:
        print(metrics.format_report(fname, report))

    if args.summary is not None:
        metrics.summarize_reports(reports).to_csv(args.summary, index=False)
        logger.info(f"Average confidence summary written to {args.summary}.")

    failed = [r.fname for r in results if r.status == "failed"]
    if failed:
        logger.error(f"{len(failed)} of {len(results)} files failed.")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
