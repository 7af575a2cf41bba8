import dataclasses
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar, Generic

from chronicle_backup import logger
from chronicle_backup.config.sub_configs import RetryConfig
from chronicle_backup.types.hash_method import HashMethod
from chronicle_backup.utils import file_utils, misc_utils
from chronicle_backup.utils.hash_utils import SizeAndHash

_T = TypeVar('_T')

# (src, dst, hash_method) -> what has been read from src. Raises on failure
Transferer = Callable[[Path, Path, HashMethod], SizeAndHash]


def default_transferer(src: Path, dst: Path, hash_method: HashMethod) -> SizeAndHash:
	return file_utils.copy_file_hashed(src, dst, hash_method=hash_method)


@dataclasses.dataclass(frozen=True)
class AttemptResult(Generic[_T]):
	value: Optional[_T]
	attempts: int
	error: Optional[Exception] = None

	@property
	def ok(self) -> bool:
		return self.error is None

	def get_error_message(self) -> str:
		return misc_utils.one_line(self.error) if self.error is not None else ''


class CopyExecutor:
	"""
	Runs file operations with a bounded retry policy.
	A retry only blocks the worker that handles the file
	"""

	def __init__(
			self, retry: RetryConfig, hash_method: HashMethod, *,
			transferer: Optional[Transferer] = None,
			sleep_func: Callable[[float], None] = time.sleep,
	):
		self.logger = logger.get()
		self.retry = retry
		self.hash_method = hash_method
		self.transferer: Transferer = transferer or default_transferer
		self.sleep_func = sleep_func

	@property
	def max_attempts(self) -> int:
		return max(1, self.retry.max_attempts)

	@property
	def continue_on_failure(self) -> bool:
		return self.retry.continue_on_failure

	def run_with_retry(self, what: str, path: Path, func: Callable[[], _T]) -> AttemptResult[_T]:
		last_error: Optional[Exception] = None
		for i in range(self.max_attempts):
			attempt = i + 1
			try:
				return AttemptResult(func(), attempt)
			except Exception as e:
				last_error = e
				if attempt < self.max_attempts:
					self.logger.warning('{} {} failed (attempt {} / {}), retrying in {}s: {}'.format(
						what.capitalize(), str(path), attempt, self.max_attempts, self.retry.delay.value, misc_utils.one_line(e),
					))
					self.sleep_func(self.retry.delay.value)
				else:
					self.logger.error('{} {} failed (attempt {} / {}), no more retry: {}'.format(
						what.capitalize(), str(path), attempt, self.max_attempts, misc_utils.one_line(e),
					))
		return AttemptResult(None, self.max_attempts, last_error)

	def transfer(self, src: Path, dst: Path) -> AttemptResult[SizeAndHash]:
		"""
		Copies src to dst. A partially written dst is removed after each failed attempt
		"""
		def attempt_once() -> SizeAndHash:
			dst.parent.mkdir(parents=True, exist_ok=True)
			try:
				return self.transferer(src, dst, self.hash_method)
			except BaseException:
				try:
					dst.unlink(missing_ok=True)
				except OSError as e:
					self.logger.error('Remove partial file {} failed: {}'.format(str(dst), e))
				raise

		return self.run_with_retry('transfer', src, attempt_once)
