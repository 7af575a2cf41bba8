import os
import socket
import threading
from typing import Optional, List

import psutil
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from chronicle_backup import logger
from chronicle_backup.db import schema
from chronicle_backup.db.access import DbAccess
from chronicle_backup.db.session import DbSession
from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.exceptions import AlreadyRunning, PersistenceError, SelectionError
from chronicle_backup.ledger.statistics import StatisticsAggregator
from chronicle_backup.types.manifest import ManifestSummary
from chronicle_backup.types.pending_run import PendingRun
from chronicle_backup.types.run_info import RunInfo
from chronicle_backup.types.run_statistics import RunStatisticsInfo
from chronicle_backup.utils import conversion_utils


class RunLedger:
	"""
	Durable history of committed runs, plus the per backup type run lease.

	A run becomes visible to any query only by :meth:`commit_run`.
	Until then, the only trace of it is its lease row
	"""
	__start_lock = threading.Lock()

	def __init__(self):
		self.logger = logger.get()
		self.statistics = StatisticsAggregator()

	# ================================ Run lifecycle ================================

	@classmethod
	def __is_lease_stale(cls, lease: schema.RunLease) -> bool:
		if lease.hostname != socket.gethostname():
			return False
		if lease.pid == os.getpid():
			return False
		return not psutil.pid_exists(lease.pid)

	@classmethod
	def __allocate_run_id(cls, session: DbSession, timestamp_us: int) -> str:
		while True:
			run_id = conversion_utils.timestamp_us_to_run_id(timestamp_us)
			if not session.has_run(run_id) and session.get_lease_by_run_id(run_id) is None:
				return run_id
			timestamp_us += 1

	def record_run_start(self, run: PendingRun) -> str:
		"""
		Allocates the run id and takes the lease of the run's backup type

		:raise AlreadyRunning: if another live run of the same backup type holds the lease
		:raise PersistenceError: if the ledger cannot be written
		"""
		with self.__start_lock:
			try:
				with DbAccess.open_session() as session:
					lease = session.get_lease_opt(run.backup_type)
					if lease is not None:
						if self.__is_lease_stale(lease):
							self.logger.warning('Stealing stale lease of backup type {!r} from run {} (pid {} is gone)'.format(run.backup_type, lease.run_id, lease.pid))
							session.delete(lease)
							session.flush()
						else:
							raise AlreadyRunning(run.backup_type, lease.run_id)

					run_id = self.__allocate_run_id(session, run.started_at)
					session.create_and_add_lease(
						backup_type=run.backup_type,
						run_id=run_id,
						hostname=socket.gethostname(),
						pid=os.getpid(),
						acquired_at=conversion_utils.now_us(),
					)
			except IntegrityError:
				with DbAccess.open_session() as session:
					lease = session.get_lease_opt(run.backup_type)
					raise AlreadyRunning(run.backup_type, lease.run_id if lease is not None else '?')
			except SQLAlchemyError as e:
				raise PersistenceError('record run start failed: {}'.format(e)) from e

		run.id = run_id
		self.logger.debug('Recorded start of run {} (type {!r}, strategy {})'.format(run_id, run.backup_type, run.strategy.name))
		return run_id

	def commit_run(self, run: PendingRun, summary: ManifestSummary) -> RunInfo:
		"""
		The single durable write that seals the run. Inserts the run row, updates statistics
		and releases the lease, all in one transaction

		:raise PersistenceError: if the ledger cannot be written
		"""
		if run.finished_at is None or run.outcome is None:
			raise ValueError('run {} is not finished'.format(run.id))
		try:
			with DbAccess.open_session() as session:
				db_run = session.create_and_add_run(
					id=run.get_id(),
					backup_type=run.backup_type,
					strategy=run.strategy.value,
					parent_run_id=run.parent_run_id,
					outcome=run.outcome.value,
					hash_method=run.hash_method.name,
					started_at=run.started_at,
					finished_at=run.finished_at,
					duration=run.duration,
					file_count=summary.file_count,
					total_bytes=summary.total_bytes,
					failed_count=summary.failed_count,
					deduplicated_count=summary.deduplicated_count,
					stored_bytes=summary.stored_bytes,
					message=run.message,
				)
				self.statistics.apply(session, db_run)
				session.delete_lease(run.backup_type, run.get_id())
				session.flush()
				info = RunInfo.of(db_run)
		except SQLAlchemyError as e:
			raise PersistenceError('commit run {} failed: {}'.format(run.id, e)) from e

		self.logger.debug('Committed run {} with outcome {}'.format(info.id, info.outcome.name))
		return info

	def abandon_run(self, run: PendingRun):
		"""
		Releases the lease of a run that will never be committed
		"""
		if run.id is None:
			return
		try:
			with DbAccess.open_session() as session:
				session.delete_lease(run.backup_type, run.id)
		except SQLAlchemyError as e:
			self.logger.error('Failed to release the lease of run {}: {}'.format(run.id, e))

	# =================================== Queries ===================================

	def find_last_successful_full(self, backup_type: str) -> Optional[RunInfo]:
		"""
		:raise SelectionError: if the lookup itself fails
		"""
		try:
			with DbAccess.open_session() as session:
				run = session.get_last_run_of_strategy(backup_type, RunStrategy.full, RunOutcome.baseline_outcomes())
				return RunInfo.of(run) if run is not None else None
		except SQLAlchemyError as e:
			raise SelectionError('baseline lookup for backup type {!r} failed: {}'.format(backup_type, e)) from e

	def recent_runs(self, backup_type: str, limit: int) -> List[RunInfo]:
		"""
		:return: committed runs of the given type, newest first
		"""
		with DbAccess.open_session() as session:
			return [RunInfo.of(run) for run in session.list_runs(backup_type=backup_type, limit=limit)]

	def aggregate_statistics(self, backup_type: str) -> RunStatisticsInfo:
		with DbAccess.open_session() as session:
			return RunStatisticsInfo.of(backup_type, session.get_statistics_opt(backup_type))

	def get_run(self, run_id: str) -> RunInfo:
		with DbAccess.open_session() as session:
			return RunInfo.of(session.get_run(run_id))

	def has_run(self, run_id: str) -> bool:
		with DbAccess.open_session() as session:
			return session.has_run(run_id)

	def list_runs(self, *, backup_type: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> List[RunInfo]:
		with DbAccess.open_session() as session:
			return [RunInfo.of(run) for run in session.list_runs(backup_type=backup_type, limit=limit, offset=offset)]

	def list_committed_run_ids(self) -> List[str]:
		with DbAccess.open_session() as session:
			return session.get_all_run_ids()

	def list_leased_run_ids(self, *, live_only: bool = False) -> List[str]:
		with DbAccess.open_session() as session:
			return [lease.run_id for lease in session.list_leases() if not (live_only and self.__is_lease_stale(lease))]

	def release_stale_leases(self) -> List[str]:
		"""
		Deletes the leases left by dead processes of this host

		:return: run ids of the released leases
		"""
		released: List[str] = []
		with self.__start_lock:
			with DbAccess.open_session() as session:
				for lease in session.list_leases():
					if self.__is_lease_stale(lease):
						self.logger.warning('Releasing stale lease of backup type {!r} from run {} (pid {} is gone)'.format(lease.backup_type, lease.run_id, lease.pid))
						session.delete(lease)
						released.append(lease.run_id)
		return released
