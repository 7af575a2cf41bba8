import threading
from typing import Optional

from chronicle_backup.types.progress import ProgressSnapshot
from chronicle_backup.utils.timer import Timer


class RunProgress:
	"""
	Run-level counters, shared by all workers of a run. Everything is guarded by one lock
	"""

	def __init__(self, total_files: int = 0, total_bytes: int = 0, *, telemetry_interval: int = 10):
		self.__lock = threading.Lock()
		self.__timer = Timer()
		self.__telemetry_interval = max(1, telemetry_interval)

		self.__total_files = total_files
		self.__total_bytes = total_bytes
		self.__processed_files = 0
		self.__processed_bytes = 0
		self.__transferred_files = 0
		self.__transferred_bytes = 0
		self.__current_file: Optional[str] = None
		self.__speed: float = 0.0  # bytes per second

	def set_totals(self, total_files: int, total_bytes: int):
		with self.__lock:
			self.__total_files = total_files
			self.__total_bytes = total_bytes
			self.__timer.restart()

	def set_current_file(self, path: str):
		with self.__lock:
			self.__current_file = path

	def on_transferred(self, size: int):
		with self.__lock:
			self.__transferred_files += 1
			self.__transferred_bytes += size

	def on_file_done(self, size: int):
		with self.__lock:
			self.__processed_files += 1
			self.__processed_bytes += size
			if self.__processed_files % self.__telemetry_interval == 0 or self.__processed_files == self.__total_files:
				self.__update_speed()

	def __update_speed(self):
		elapsed = self.__timer.get_elapsed()
		self.__speed = self.__processed_bytes / elapsed if elapsed > 0 else 0.0

	@property
	def transferred_files(self) -> int:
		with self.__lock:
			return self.__transferred_files

	@property
	def transferred_bytes(self) -> int:
		with self.__lock:
			return self.__transferred_bytes

	@property
	def speed(self) -> float:
		"""
		bytes per second, as of the latest sample
		"""
		with self.__lock:
			return self.__speed

	def snapshot(self) -> ProgressSnapshot:
		with self.__lock:
			if self.__total_bytes > 0:
				percent = 100.0 * self.__processed_bytes / self.__total_bytes
			elif self.__total_files > 0:
				percent = 100.0 * self.__processed_files / self.__total_files
			else:
				percent = 0.0
			return ProgressSnapshot(
				percent=min(100.0, percent),
				current_file=self.__current_file,
				speed_mbps=self.__speed / 2 ** 20,
				processed_files=self.__processed_files,
				total_files=self.__total_files,
				processed_bytes=self.__processed_bytes,
			)
