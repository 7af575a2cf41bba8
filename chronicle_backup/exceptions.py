
class ChronicleBackupError(Exception):
	pass


class ConfigurationError(ChronicleBackupError):
	pass


class PreflightError(ChronicleBackupError):
	"""
	The backup destination cannot be used, e.g. the storage root is not writable
	"""
	pass


class AlreadyRunning(ChronicleBackupError):
	def __init__(self, backup_type: str, run_id: str):
		super().__init__('a run of backup type {!r} is already in progress: {}'.format(backup_type, run_id))
		self.backup_type = backup_type
		self.run_id = run_id


class SelectionError(ChronicleBackupError):
	pass


class TransferError(ChronicleBackupError):
	def __init__(self, path: str, attempts: int, cause: Exception):
		super().__init__('transfer of {!r} failed after {} attempt(s): {}'.format(path, attempts, cause))
		self.path = path
		self.attempts = attempts
		self.cause = cause


class PersistenceError(ChronicleBackupError):
	pass


class RunNotFound(ChronicleBackupError):
	def __init__(self, run_id: str):
		super().__init__('run {!r} not found'.format(run_id))
		self.run_id = run_id


class RunNotCommitted(ChronicleBackupError):
	def __init__(self, run_id: str):
		super().__init__('run {!r} is not committed yet'.format(run_id))
		self.run_id = run_id


class ManifestNotFound(ChronicleBackupError):
	def __init__(self, run_id: str):
		super().__init__('manifest of run {!r} not found'.format(run_id))
		self.run_id = run_id


class ManifestAlreadyExists(ChronicleBackupError):
	def __init__(self, run_id: str):
		super().__init__('manifest of run {!r} already exists'.format(run_id))
		self.run_id = run_id


class DuplicatedArchivePath(ChronicleBackupError):
	def __init__(self, archive_path: str):
		super().__init__('archive path {!r} already present in the manifest'.format(archive_path))
		self.archive_path = archive_path
