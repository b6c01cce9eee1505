# -*- coding: utf-8 -*-
"""
Ingestion service: bounded worker pools for parse -> extract -> upsert.

Each stage owns a ThreadPoolExecutor. When a stage finishes a job it submits
the job to the next stage's pool, so a document's stages run strictly in
order while different documents overlap freely. Upserts from concurrent
documents interleave; the upsert layer's atomic merges keep that safe.

Job outcome:
    - ParseError (unsupported, corrupt, empty, too large) -> FAILED
    - StoreUnavailableError during upsert                 -> FAILED
    - skipped blocks, parser warnings, per-item conflicts -> DONE with warnings
    - cancel() takes effect at the next stage boundary     -> CANCELLED

Example:
    with IngestionService(engine, upserter) as service:
        job = service.submit(Path("people.xlsx").read_bytes(), "xlsx", "people.xlsx")
        job.wait()
        print(job.status, job.report)
"""
# Standard library
import logging
import threading
import uuid
from collections import OrderedDict, deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

# Config imports (direct)
from config.pipeline_config import INGESTION_CONFIG

# Local
from kgforge.ingestion.format_detection import detect_format
from kgforge.ingestion.transmutation import parse, resolve_format
from kgforge.pipeline.ingestion_job import IngestionJob, JobStatus
from kgforge.utils.dataclasses import DocumentFormat
from kgforge.utils.errors import ParseError, StoreUnavailableError

logger = logging.getLogger(__name__)


class IngestionService:
    """
    Run IngestionJobs through the three stages.

    Args:
        engine: ExtractionEngine
        upserter: GraphUpserter
        config: Overrides for INGESTION_CONFIG
        parser: parse(raw_bytes, declared_format, source_id) -> CanonicalDocument
        parser_config: Overrides for PARSER_CONFIG passed to the parser
    """

    def __init__(
        self,
        engine,
        upserter,
        config: Optional[Dict] = None,
        parser: Callable = parse,
        parser_config: Optional[Dict] = None,
    ):
        self.engine = engine
        self.upserter = upserter
        self.parser = parser
        self.parser_config = parser_config
        self.config = {**INGESTION_CONFIG, **(config or {})}

        self._parse_pool = ThreadPoolExecutor(
            max_workers=self.config['parse_workers'], thread_name_prefix='parse'
        )
        self._extract_pool = ThreadPoolExecutor(
            max_workers=self.config['extract_workers'], thread_name_prefix='extract'
        )
        self._upsert_pool = ThreadPoolExecutor(
            max_workers=self.config['upsert_workers'], thread_name_prefix='upsert'
        )

        self._jobs: "OrderedDict[str, IngestionJob]" = OrderedDict()
        self._finished: deque = deque()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def submit(
        self,
        raw_bytes: bytes,
        declared_format: Union[str, DocumentFormat],
        source_id: str,
    ) -> IngestionJob:
        """Queue a document and return its job handle immediately."""
        fmt_tag = declared_format.value if isinstance(declared_format, DocumentFormat) else str(declared_format)
        job = IngestionJob(
            job_id=uuid.uuid4().hex,
            source_id=source_id,
            declared_format=fmt_tag,
            raw_bytes=raw_bytes,
        )
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info(f"Job {job.job_id[:8]} submitted: {source_id} ({fmt_tag}, {len(raw_bytes)} bytes)")
        self._parse_pool.submit(self._run_parse, job)
        return job

    def submit_file(
        self,
        path: Union[str, Path],
        declared_format: Optional[Union[str, DocumentFormat]] = None,
        source_id: Optional[str] = None,
    ) -> IngestionJob:
        """Read a file and submit it, detecting the format when not declared."""
        path = Path(path)
        raw_bytes = path.read_bytes()
        fmt = declared_format or detect_format(path.name, raw_bytes)
        return self.submit(raw_bytes, fmt, source_id or path.name)

    def ingest(
        self,
        raw_bytes: bytes,
        declared_format: Union[str, DocumentFormat],
        source_id: str,
        timeout: Optional[float] = None,
    ) -> IngestionJob:
        """Submit and wait for the job to finish."""
        job = self.submit(raw_bytes, declared_format, source_id)
        job.wait(timeout)
        return job

    def get_job(self, job_id: str) -> Optional[IngestionJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> List[IngestionJob]:
        with self._lock:
            return list(self._jobs.values())

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; with wait, drain every stage in order."""
        self._parse_pool.shutdown(wait=wait)
        self._extract_pool.shutdown(wait=wait)
        self._upsert_pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _finish(self, job: IngestionJob) -> None:
        """Archive a terminal job; drop the oldest beyond job_archive_size."""
        logger.info(
            f"Job {job.job_id[:8]} {job.status.value}: {job.source_id}"
            + (f" ({job.error})" if job.error else "")
        )
        with self._lock:
            self._finished.append(job.job_id)
            while len(self._finished) > self.config['job_archive_size']:
                self._jobs.pop(self._finished.popleft(), None)

    def _run_parse(self, job: IngestionJob) -> None:
        if job.should_stop():
            self._finish(job)
            return
        if not job.transition(JobStatus.PARSING):
            # Cancelled between the boundary check and the transition
            self._finish(job)
            return
        try:
            job.format = resolve_format(job.declared_format)
            kwargs = {'config': self.parser_config} if self.parser_config else {}
            job.document = self.parser(job.raw_bytes, job.format, job.source_id, **kwargs)
        except ParseError as e:
            logger.error(f"Job {job.job_id[:8]} parse failed: {e}")
            job.fail(f"{type(e).__name__}: {e}")
            self._finish(job)
            return
        except Exception as e:
            logger.exception(f"Job {job.job_id[:8]} parser crashed")
            job.fail(f"{type(e).__name__}: {e}")
            self._finish(job)
            return

        job.raw_bytes = None
        job.warnings.extend(job.document.warnings)
        self._extract_pool.submit(self._run_extract, job)

    def _run_extract(self, job: IngestionJob) -> None:
        if job.should_stop():
            self._finish(job)
            return
        if not job.transition(JobStatus.EXTRACTING):
            self._finish(job)
            return
        try:
            job.extraction = self.engine.extract(job.document)
        except Exception as e:
            logger.exception(f"Job {job.job_id[:8]} extraction crashed")
            job.fail(f"{type(e).__name__}: {e}")
            self._finish(job)
            return

        job.warnings.extend(job.extraction.warnings)
        self._upsert_pool.submit(self._run_upsert, job)

    def _run_upsert(self, job: IngestionJob) -> None:
        if job.should_stop():
            self._finish(job)
            return
        if not job.transition(JobStatus.UPSERTING):
            self._finish(job)
            return
        extraction = job.extraction
        try:
            job.report = self.upserter.upsert(
                extraction.entities, extraction.relationships, extraction.fragments
            )
        except StoreUnavailableError as e:
            logger.error(f"Job {job.job_id[:8]} upsert failed: {e}")
            job.fail(f"{type(e).__name__}: {e}")
            self._finish(job)
            return
        except Exception as e:
            logger.exception(f"Job {job.job_id[:8]} upsert crashed")
            job.fail(f"{type(e).__name__}: {e}")
            self._finish(job)
            return

        job.warnings.extend(job.report.errors)
        job.transition(JobStatus.DONE)
        self._finish(job)
