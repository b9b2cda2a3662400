import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .compose import composite
from .errors import CompositeError, DecodeError, DuplicateSourceError, PipelineError
from .loader import SourceImage, discover_source_images, load_source_image
from .render import fit_to_region
from .templates import Template, TemplateRegistry
from .writer import OutputWriter


logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobOutcome:
    """
    Result record for one (template, source image) pair.

    Moves pending -> running -> succeeded | failed exactly once; the terminal
    state carries either the written path or the error that stopped the pair.
    """

    template_name: str
    source_name: str
    state: JobState = JobState.PENDING
    output_path: Optional[Path] = None
    error: Optional[PipelineError] = None

    def start(self) -> None:
        self._transition(JobState.PENDING, JobState.RUNNING)

    def succeed(self, output_path: Path) -> None:
        self._transition(JobState.RUNNING, JobState.SUCCEEDED)
        self.output_path = output_path

    def fail(self, error: PipelineError) -> None:
        self._transition(JobState.RUNNING, JobState.FAILED)
        self.error = error

    @property
    def reason(self) -> Optional[str]:
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"

    def _transition(self, expected: JobState, new: JobState) -> None:
        if self.state is not expected:
            raise RuntimeError(
                f"Job {self.template_name}/{self.source_name} cannot move "
                f"from {self.state.value} to {new.value}"
            )
        self.state = new


@dataclass
class RunReport:
    outcomes: List[JobOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.state is JobState.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state is JobState.FAILED)

    @property
    def failures(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.state is JobState.FAILED]

    def exit_code(self, fail_on_error: bool = True) -> int:
        return 1 if fail_on_error and self.failed else 0


ProgressCallback = Callable[[JobOutcome], None]


def generate_pair(template: Template, source: SourceImage, writer: OutputWriter) -> Path:
    """Fit, composite and write one pair. Shares no state with other pairs."""
    fitted = fit_to_region(source.image, template.region.size, template.policy, template.centering)
    result = composite(template, fitted, source_name=source.name)
    return writer.write(result)


def resolve_workers(requested: Optional[int] = None) -> int:
    """Worker count: the request, capped at (and defaulting to) the CPU count."""
    available = os.cpu_count() or 1
    if requested is None:
        return available
    return max(1, min(requested, available))


class GenerationPipeline:
    """
    Drives every template x source image pair through
    decode -> fit -> composite -> write.

    Source images are decoded once and reused for every template. Work is
    spread over a thread pool no larger than the CPU count, which also bounds
    how many decoded images are resident at once. A failing pair is recorded
    in its JobOutcome and never affects its siblings.
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        writer: OutputWriter,
        max_workers: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.registry = registry
        self.writer = writer
        self.max_workers = resolve_workers(max_workers)
        self.on_progress = on_progress

    def plan(self, input_dir: Path) -> Dict[Path, List[JobOutcome]]:
        """One pending outcome per (source, template), in sorted source order."""
        jobs: Dict[Path, List[JobOutcome]] = {}
        for path in discover_source_images(input_dir):
            jobs[path] = [
                JobOutcome(template_name=template.name, source_name=path.stem)
                for template in self.registry
            ]
        return jobs

    def run(
        self,
        input_dir: Path,
        jobs: Optional[Dict[Path, List[JobOutcome]]] = None,
    ) -> RunReport:
        """
        Process every pair and return the report.

        `jobs` is a result of plan() for the same directory; callers that
        need the pair count up front pass it in so the directory is listed
        only once.
        """
        if jobs is None:
            jobs = self.plan(input_dir)
        report = RunReport([o for outcomes in jobs.values() for o in outcomes])
        if not jobs:
            logger.info("No source images found in %s", input_dir)
            return report

        pending: Dict[Path, List[JobOutcome]] = {}
        claimed: Dict[str, Path] = {}
        for path, outcomes in jobs.items():
            owner = claimed.setdefault(path.stem, path)
            if owner == path:
                pending[path] = outcomes
                continue
            error = DuplicateSourceError(
                f"{path.name} has the same base name as {owner.name}; skipped"
            )
            for outcome in outcomes:
                outcome.start()
                outcome.fail(error)
                self._report_progress(outcome)

        logger.info(
            "Generating %d asset(s) from %d source image(s) with %d worker(s)",
            len(pending) * len(self.registry),
            len(pending),
            self.max_workers,
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._process_source, path, outcomes): outcomes
                for path, outcomes in pending.items()
            }
            for future in as_completed(futures):
                future.result()
                for outcome in futures[future]:
                    self._report_progress(outcome)

        logger.info("Finished: %d succeeded, %d failed", report.succeeded, report.failed)
        return report

    def _process_source(self, path: Path, outcomes: List[JobOutcome]) -> None:
        try:
            source = load_source_image(path)
        except PipelineError as e:
            logger.warning("Skipping %s: %s", path.name, e)
            self._fail_all(outcomes, e)
            return
        except Exception as e:
            logger.exception("Unexpected error decoding %s", path.name)
            error = DecodeError(f"Cannot decode {path.name}: {type(e).__name__}: {e}", path=path)
            error.__cause__ = e
            self._fail_all(outcomes, error)
            return

        for template, outcome in zip(self.registry, outcomes):
            outcome.start()
            try:
                output_path = generate_pair(template, source, self.writer)
            except PipelineError as e:
                logger.warning("Failed %s for %s: %s", template.name, source.name, e)
                outcome.fail(e)
            except Exception as e:
                logger.exception("Unexpected error in %s for %s", template.name, source.name)
                error = CompositeError(f"{type(e).__name__}: {e}")
                error.__cause__ = e
                outcome.fail(error)
            else:
                outcome.succeed(output_path)

    @staticmethod
    def _fail_all(outcomes: List[JobOutcome], error: PipelineError) -> None:
        for outcome in outcomes:
            outcome.start()
            outcome.fail(error)

    def _report_progress(self, outcome: JobOutcome) -> None:
        if self.on_progress is not None:
            self.on_progress(outcome)
