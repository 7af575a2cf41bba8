import dataclasses
import functools
import threading
from pathlib import Path
from typing import List, Callable, Optional, Tuple

from chronicle_backup.action import Action
from chronicle_backup.action.helpers.copy_executor import CopyExecutor, Transferer, AttemptResult
from chronicle_backup.action.helpers.dedup_engine import DedupEngine, DedupDecision, DedupAction
from chronicle_backup.action.helpers.differential_selector import DifferentialSelector, StrategyDecision, SelectionResult
from chronicle_backup.action.helpers.manifest_builder import ManifestBuilder
from chronicle_backup.action.helpers.path_resolver import PathResolver, Candidate, ResolveResult
from chronicle_backup.action.helpers.run_progress import RunProgress
from chronicle_backup.collaborators.archive_sink import ArchiveSink, TarArchiveSink
from chronicle_backup.collaborators.notifier import Notifier, LoggingNotifier, notify_safely
from chronicle_backup.config.backup_config import BackupTypeConfig
from chronicle_backup.db.values import RunStrategy, RunOutcome, StorageMode
from chronicle_backup.exceptions import PreflightError, TransferError, PersistenceError, ManifestAlreadyExists
from chronicle_backup.ledger.manifest_store import ManifestStore
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.types.manifest import ManifestEntry, BlobRef, Manifest, ManifestSummary
from chronicle_backup.types.pending_run import PendingRun
from chronicle_backup.types.run_info import RunInfo
from chronicle_backup.types.run_result import RunResult, FileResult, FileResultKind
from chronicle_backup.types.units import ByteCount
from chronicle_backup.utils import file_utils, run_storage_utils, conversion_utils, misc_utils, log_utils
from chronicle_backup.utils.hash_utils import SizeAndHash
from chronicle_backup.utils.thread_pool import FailFastThreadPool


class _RunInterrupted(Exception):
	pass


@dataclasses.dataclass(frozen=True)
class _RunContext:
	run_id: str
	builder: ManifestBuilder
	dedup: DedupEngine
	executor: CopyExecutor


class CreateRunAction(Action[RunResult]):
	"""
	One backup run, from config validation to the ledger commit.

	:meth:`prepare` does everything that may refuse the run: config validation, preflight,
	lease acquisition and the strategy decision. :meth:`run` does the rest, and never raises
	for failures of the run itself. Those end up in the returned :class:`RunResult`
	"""

	def __init__(
			self, backup_type: str, strategy: RunStrategy = RunStrategy.full, *,
			transferer: Optional[Transferer] = None,
			sleep_func: Optional[Callable[[float], None]] = None,
			notifier: Optional[Notifier] = None,
			archive_sink: Optional[ArchiveSink] = None,
	):
		super().__init__()
		self.backup_type = backup_type
		self.requested_strategy = strategy
		self.transferer = transferer
		self.sleep_func = sleep_func
		self.notifier: Notifier = notifier or LoggingNotifier()
		self.archive_sink: ArchiveSink = archive_sink or TarArchiveSink(gzip=self.config.archive.gzip)

		self.ledger = RunLedger()
		self.manifest_store = ManifestStore()
		self.progress = RunProgress(telemetry_interval=self.config.telemetry_interval_files)

		self.__type_config: Optional[BackupTypeConfig] = None
		self.__run: Optional[PendingRun] = None
		self.__decision: Optional[StrategyDecision] = None
		self.__resolved: Optional[ResolveResult] = None
		self.__selection: Optional[SelectionResult] = None
		self.__rollbackers: List[Callable] = []
		self.__abort_requested = threading.Event()
		self.__results_lock = threading.Lock()
		self.__results: List[FileResult] = []
		self.__committed_manifest: Optional[Manifest] = None

	def is_interruptable(self) -> bool:
		return True

	@property
	def run_id(self) -> Optional[str]:
		return self.__run.id if self.__run is not None else None

	@property
	def decision(self) -> Optional[StrategyDecision]:
		return self.__decision

	def get_committed_manifest(self) -> Optional[Manifest]:
		return self.__committed_manifest

	# ================================ Preparation ================================

	def __preflight(self):
		storage_path = self.config.storage_path
		try:
			for path in [storage_path, self.config.runs_path, self.config.temp_path]:
				file_utils.check_dir_writable(path)
			free_space = file_utils.get_free_space(storage_path)
		except OSError as e:
			raise PreflightError('storage root {!r} is not writable: {}'.format(str(storage_path), misc_utils.one_line(e))) from e
		self.logger.info('Storage root {!r} is writable, free space {}'.format(str(storage_path), ByteCount(free_space).auto_str()))

	def prepare(self) -> PendingRun:
		"""
		:raise ConfigurationError: the backup type is unknown or misconfigured
		:raise PreflightError: the storage root is not writable
		:raise AlreadyRunning: another run of the same backup type is in progress
		:raise PersistenceError: the run start cannot be recorded
		"""
		if self.__run is not None:
			return self.__run

		self.__type_config = self.config.get_backup_type(self.backup_type)
		self.__preflight()

		run = PendingRun(
			backup_type=self.backup_type,
			strategy=self.requested_strategy,
			hash_method=self.config.hash_method,
			started_at=conversion_utils.now_us(),
		)
		self.ledger.record_run_start(run)
		try:
			decision = DifferentialSelector(self.ledger).resolve_strategy(self.backup_type, self.requested_strategy)
		except BaseException:
			self.ledger.abandon_run(run)
			raise

		run.strategy = decision.strategy
		run.parent_run_id = decision.parent_run_id
		self.__decision = decision
		self.__run = run
		self.logger.info('Run {} of backup type {!r} started, strategy {}{}'.format(
			run.id, self.backup_type, run.strategy.name,
			' (downgraded from {})'.format(decision.requested.name) if decision.downgraded else '',
		))
		return run

	# ================================ Rollback ================================

	def __remove_run_dir(self, run_dir: Path):
		try:
			file_utils.rm_rf(run_dir, missing_ok=True)
		except OSError as e:
			self.logger.error('(rollback) remove run directory {!r} failed: {}'.format(str(run_dir), e))

	def __apply_rollback(self):
		if len(self.__rollbackers) > 0:
			self.logger.warning('Run {} cannot be committed, applying rollback'.format(self.run_id))
			for rollback_func in self.__rollbackers:
				rollback_func()
			self.__rollbackers.clear()

	# ================================ File processing ================================

	def __make_failed_result(self, candidate: Candidate, content_hash: Optional[str], attempt: AttemptResult) -> FileResult:
		entry = ManifestEntry(
			original_path=candidate.original_path,
			archive_path=candidate.archive_path,
			category=candidate.category,
			size_bytes=candidate.size,
			content_hash=content_hash,
			last_write_time=candidate.mtime_ns,
			storage_mode=StorageMode.failed,
			error=attempt.get_error_message(),
		)
		return FileResult(FileResultKind.failed, entry, attempt.attempts)

	def __store(self, ctx: _RunContext, candidate: Candidate, decision: DedupDecision) -> Tuple[FileResult, Optional[AttemptResult]]:
		dst = run_storage_utils.get_blob_path(ctx.run_id, candidate.archive_path)
		try:
			transferred: AttemptResult[SizeAndHash] = ctx.executor.transfer(candidate.path, dst)
		except BaseException:
			ctx.dedup.on_store_failed(decision)
			raise
		if not transferred.ok:
			ctx.dedup.on_store_failed(decision)
			return self.__make_failed_result(candidate, decision.content_hash, transferred), transferred

		sah = transferred.value
		ref = BlobRef(ctx.run_id, candidate.archive_path)
		if sah.hash != decision.content_hash:
			# the stored bytes are what counts
			self.logger.warning('File {!r} changed during the run, hash {} -> {}, size {} -> {}'.format(
				candidate.original_path, decision.content_hash, sah.hash, decision.size, sah.size,
			))
			ctx.dedup.on_store_failed(decision)
			if (existing := ctx.dedup.adopt_unclaimed(sah.hash, sah.size, ref)) is not None:
				# the new content is already stored, keep a single blob for it
				try:
					file_utils.rm_rf(dst, missing_ok=True)
				except OSError as e:
					self.logger.warning('Remove redundant blob {!r} failed: {}'.format(str(dst), e))
				entry = ManifestEntry(
					original_path=candidate.original_path,
					archive_path=candidate.archive_path,
					category=candidate.category,
					size_bytes=sah.size,
					content_hash=sah.hash,
					last_write_time=candidate.mtime_ns,
					storage_mode=StorageMode.deduplicated_reference,
					ref_run_id=existing.run_id,
					ref_archive_path=existing.archive_path,
				)
				return FileResult(FileResultKind.deduplicated, entry, transferred.attempts), None
		else:
			ctx.dedup.on_stored(decision, ref)
		self.progress.on_transferred(sah.size)

		entry = ManifestEntry(
			original_path=candidate.original_path,
			archive_path=candidate.archive_path,
			category=candidate.category,
			size_bytes=sah.size,
			content_hash=sah.hash,
			last_write_time=candidate.mtime_ns,
			storage_mode=StorageMode.stored,
		)
		return FileResult(FileResultKind.stored, entry, transferred.attempts), None

	def __process_candidate(self, ctx: _RunContext, candidate: Candidate) -> Optional[FileResult]:
		if self.is_interrupted.is_set() or self.__abort_requested.is_set():
			return None

		self.progress.set_current_file(candidate.original_path)
		failure: Optional[AttemptResult] = None
		hashed: AttemptResult[SizeAndHash] = ctx.executor.run_with_retry('hash', candidate.path, functools.partial(ctx.dedup.hash_file, candidate.path))
		if not hashed.ok:
			result = self.__make_failed_result(candidate, None, hashed)
			failure = hashed
		else:
			decision = ctx.dedup.decide(hashed.value.hash, hashed.value.size)
			if decision.action == DedupAction.reference:
				entry = ManifestEntry(
					original_path=candidate.original_path,
					archive_path=candidate.archive_path,
					category=candidate.category,
					size_bytes=hashed.value.size,
					content_hash=hashed.value.hash,
					last_write_time=candidate.mtime_ns,
					storage_mode=StorageMode.deduplicated_reference,
					ref_run_id=decision.ref.run_id,
					ref_archive_path=decision.ref.archive_path,
				)
				result = FileResult(FileResultKind.deduplicated, entry, hashed.attempts)
			else:
				result, failure = self.__store(ctx, candidate, decision)

		ctx.builder.add(result.entry)
		with self.__results_lock:
			self.__results.append(result)
		self.progress.on_file_done(result.entry.size_bytes)

		if failure is not None and not ctx.executor.continue_on_failure:
			self.__abort_requested.set()
			raise TransferError(candidate.original_path, failure.attempts, failure.error)
		return result

	def __execute(self, run: PendingRun, builder: ManifestBuilder):
		run_id = run.get_id()
		self.__resolved = PathResolver(self.__type_config.items).resolve()
		self.__selection = selection = DifferentialSelector(self.ledger).select(self.__decision, self.__resolved)

		total_bytes = sum(c.size for c in selection.candidates)
		self.progress.set_totals(len(selection.candidates), total_bytes)
		self.logger.info('Run {}: {} file(s) to process, {} in total'.format(run_id, len(selection.candidates), ByteCount(total_bytes).auto_str()))

		run_dir = run_storage_utils.get_run_dir(run_id)
		self.__rollbackers.append(functools.partial(self.__remove_run_dir, run_dir))
		run_storage_utils.get_run_data_dir(run_id).mkdir(parents=True, exist_ok=True)
		for directory in selection.directories:
			run_storage_utils.get_blob_path(run_id, directory.archive_path).mkdir(parents=True, exist_ok=True)

		dedup = DedupEngine(self.config.deduplication, run.hash_method)
		dedup.build_cache(self.backup_type, self.ledger, self.manifest_store)

		executor_kwargs = {}
		if self.sleep_func is not None:
			executor_kwargs['sleep_func'] = self.sleep_func
		executor = CopyExecutor(self.config.retry, run.hash_method, transferer=self.transferer, **executor_kwargs)

		ctx = _RunContext(run_id, builder, dedup, executor)
		with FailFastThreadPool('run', max_workers=self.config.get_effective_concurrency()) as pool:
			for candidate in selection.candidates:
				if self.is_interrupted.is_set():
					break
				pool.submit(self.__process_candidate, ctx, candidate)

		if self.is_interrupted.is_set():
			raise _RunInterrupted()

	# ================================ Finishing ================================

	@classmethod
	def __seal_outcome(cls, summary: ManifestSummary, abort_cause: Optional[str]) -> Tuple[RunOutcome, str]:
		if abort_cause is not None:
			return RunOutcome.aborted, 'aborted: {}'.format(abort_cause)
		if summary.failed_count > 0 and summary.failed_count == summary.entry_count:
			return RunOutcome.failed, 'all {} file(s) failed'.format(summary.failed_count)
		if summary.failed_count > 0:
			return RunOutcome.partially_failed, '{} of {} file(s) failed'.format(summary.failed_count, summary.entry_count)
		return RunOutcome.succeeded, '{} file(s), {} stored, {} deduplicated, {} in total'.format(
			summary.file_count, summary.stored_count, summary.deduplicated_count, ByteCount(summary.total_bytes).auto_str(),
		)

	def __make_result(self, run: PendingRun, committed: bool, run_info: Optional[RunInfo], manifest: Optional[Manifest]) -> RunResult:
		with self.__results_lock:
			failures = sorted([r for r in self.__results if r.failed], key=lambda r: r.entry.archive_path)
		return RunResult(
			run_id=run.get_id(),
			backup_type=run.backup_type,
			requested_strategy=self.requested_strategy,
			strategy=run.strategy,
			parent_run_id=run.parent_run_id,
			outcome=run.outcome,
			message=run.message,
			committed=committed,
			run_info=run_info,
			manifest=manifest,
			failures=failures,
			missing_paths=list(self.__resolved.missing_paths) if self.__resolved is not None else [],
			skipped_reserved=list(self.__resolved.skipped_reserved) if self.__resolved is not None else [],
			unchanged_count=self.__selection.unchanged_count if self.__selection is not None else 0,
		)

	def __write_run_log(self, result: RunResult):
		try:
			with log_utils.open_file_logger('run') as run_logger:
				run_logger.info('run {} type={} strategy={} parent={} outcome={} committed={} message={}'.format(
					result.run_id, result.backup_type, result.strategy.name, result.parent_run_id,
					result.outcome.name, result.committed, result.message,
				))
				for failure in result.failures:
					run_logger.info('  failed: {} ({} attempt(s)): {}'.format(failure.entry.original_path, failure.attempts, failure.error))
		except OSError as e:
			self.logger.error('Write run log failed: {}'.format(e))

	def __export_archive(self, run_id: str):
		archive_config = self.config.archive
		try:
			ok = self.archive_sink.export(run_storage_utils.get_run_dir(run_id), archive_config.destination, run_id)
		except Exception as e:
			self.logger.error('Archive sink {} raised: {}'.format(type(self.archive_sink).__name__, e))
			ok = False
		if not ok:
			self.logger.warning('Archiving run {} failed, the committed run is not affected'.format(run_id))

	def run(self) -> RunResult:
		run = self.prepare()
		run_id = run.get_id()
		builder = ManifestBuilder(run_id, run.backup_type, run.strategy, run.parent_run_id, run.hash_method, run.started_at)

		abort_cause: Optional[str] = None
		try:
			try:
				self.__execute(run, builder)
			except TransferError as e:
				abort_cause = misc_utils.one_line(e.cause) if e.cause is not None else str(e)
				abort_cause = 'transfer of {!r} failed after {} attempt(s): {}'.format(e.path, e.attempts, abort_cause)
				self.logger.error('Run {} {}'.format(run_id, abort_cause))
			except _RunInterrupted:
				abort_cause = 'interrupted'
				self.logger.warning('Run {} interrupted'.format(run_id))
			except Exception as e:
				abort_cause = misc_utils.one_line(e)
				self.logger.exception('Run {} aborted by unexpected error'.format(run_id))

			run.finished_at = conversion_utils.now_us()
			summary = builder.summarize()
			run.outcome, run.message = self.__seal_outcome(summary, abort_cause)

			try:
				manifest = builder.persist(self.manifest_store)
				run_info = self.ledger.commit_run(run, summary)
			except (PersistenceError, ManifestAlreadyExists) as e:
				self.logger.error('Run {} cannot be persisted: {}'.format(run_id, e))
				self.__apply_rollback()
				self.ledger.abandon_run(run)
				run.outcome = RunOutcome.aborted
				run.message = 'aborted: {}'.format(misc_utils.one_line(e))
				result = self.__make_result(run, False, None, None)
			else:
				self.__rollbackers.clear()
				self.__committed_manifest = manifest
				result = self.__make_result(run, True, run_info, manifest)
		except BaseException:
			self.__apply_rollback()
			self.ledger.abandon_run(run)
			raise

		self.logger.info('Run {} finished with outcome {}: {}'.format(run_id, result.outcome.name, result.message))
		if len(result.failures) > 0:
			self.logger.warning('Run {} has {} failed file(s)'.format(run_id, len(result.failures)))
		self.__write_run_log(result)
		notify_safely(self.notifier, run.backup_type, run_id, result.outcome, result.message)
		if result.committed and result.outcome != RunOutcome.aborted and self.config.archive.enabled:
			self.__export_archive(run_id)
		return result
