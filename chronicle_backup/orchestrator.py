import threading
from typing import Optional, Callable

from chronicle_backup import logger
from chronicle_backup.action.create_run_action import CreateRunAction
from chronicle_backup.action.helpers.copy_executor import Transferer
from chronicle_backup.collaborators.archive_sink import ArchiveSink
from chronicle_backup.collaborators.notifier import Notifier
from chronicle_backup.db.access import DbAccess
from chronicle_backup.db.values import RunStrategy
from chronicle_backup.exceptions import RunNotCommitted
from chronicle_backup.types.manifest import Manifest
from chronicle_backup.types.progress import ProgressSnapshot
from chronicle_backup.types.run_result import RunResult
from chronicle_backup.utils import misc_utils


class RunHandle:
	"""
	A started run, executing in its own thread
	"""

	def __init__(self, action: CreateRunAction):
		self.__action = action
		self.__result: Optional[RunResult] = None
		self.__error: Optional[BaseException] = None
		self.__done = threading.Event()
		self.__thread = threading.Thread(target=self.__run, name=misc_utils.make_thread_name('run-{}'.format(action.run_id)), daemon=True)

	def _start(self):
		self.__thread.start()

	def __run(self):
		try:
			self.__result = self.__action.run()
		except BaseException as e:
			logger.get().exception('Run {} crashed'.format(self.run_id))
			self.__error = e
		finally:
			self.__done.set()

	@property
	def run_id(self) -> str:
		return self.__action.run_id

	@property
	def backup_type(self) -> str:
		return self.__action.backup_type

	@property
	def strategy(self) -> RunStrategy:
		return self.__action.decision.strategy

	@property
	def downgraded(self) -> bool:
		"""
		True if a differential run was requested but no baseline was available, so it runs as a full run
		"""
		return self.__action.decision.downgraded

	def progress(self) -> ProgressSnapshot:
		return self.__action.progress.snapshot()

	def is_done(self) -> bool:
		return self.__done.is_set()

	def abort(self):
		self.__action.interrupt()

	def wait(self, timeout: Optional[float] = None) -> Optional[RunResult]:
		"""
		:return: the run result, or None if the timeout expires first
		"""
		if not self.__done.wait(timeout):
			return None
		if self.__error is not None:
			raise self.__error
		return self.__result

	def manifest(self) -> Manifest:
		"""
		:raise RunNotCommitted: if the run has not been committed to the ledger
		"""
		if not self.__done.is_set() or (manifest := self.__action.get_committed_manifest()) is None:
			raise RunNotCommitted(self.run_id)
		return manifest


class BackupOrchestrator:
	def __init__(
			self, *,
			notifier: Optional[Notifier] = None,
			archive_sink: Optional[ArchiveSink] = None,
			transferer: Optional[Transferer] = None,
			sleep_func: Optional[Callable[[float], None]] = None,
	):
		self.logger = logger.get()
		self.notifier = notifier
		self.archive_sink = archive_sink
		self.transferer = transferer
		self.sleep_func = sleep_func

	@classmethod
	def __ensure_db(cls):
		if not DbAccess.is_initialized():
			DbAccess.init(create=True)

	def start_run(self, backup_type: str, strategy: RunStrategy = RunStrategy.full) -> RunHandle:
		"""
		Validates, checks the storage root and takes the run lease synchronously, then runs the backup in background

		:raise ConfigurationError: the backup type is unknown or misconfigured
		:raise PreflightError: the storage root is not writable
		:raise AlreadyRunning: another run of the same backup type is in progress
		"""
		self.__ensure_db()
		action = CreateRunAction(
			backup_type, strategy,
			transferer=self.transferer,
			sleep_func=self.sleep_func,
			notifier=self.notifier,
			archive_sink=self.archive_sink,
		)
		action.prepare()
		handle = RunHandle(action)
		handle._start()
		return handle

	def run(self, backup_type: str, strategy: RunStrategy = RunStrategy.full) -> RunResult:
		return self.start_run(backup_type, strategy).wait()
