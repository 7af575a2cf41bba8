import functools
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Optional

from chronicle_backup.utils import misc_utils


class FailFastThreadPool(ThreadPoolExecutor):
	"""
	A thread pool that:
	- makes exception raise as soon as possible
	- no more task will be submitted after an exception raises
	- bounds the amount of pending tasks to max_workers
	"""
	def __init__(self, name: str, max_workers: Optional[int] = None):
		if max_workers is None:
			from chronicle_backup.config.config import Config
			max_workers = Config.get().get_effective_concurrency()
		thread_name_prefix = misc_utils.make_thread_name(name)

		super().__init__(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
		self.__sem = threading.Semaphore(max_workers)
		self.__all_futures: 'queue.Queue[Future]' = queue.Queue()
		self.__errors: 'queue.Queue[Exception]' = queue.Queue()

	def submit(self, __fn, *args, **kwargs):
		func = functools.partial(__fn, *args, **kwargs)

		def wrapper_func():
			try:
				return func()
			except Exception as e:
				self.__errors.put(e)
				raise
			finally:
				self.__sem.release()

		self.__sem.acquire()
		try:
			error = self.__errors.get(block=False)
		except queue.Empty:
			pass
		else:
			self.__sem.release()
			raise error

		future = super().submit(wrapper_func)
		self.__all_futures.put(future)
		return future

	def __exit__(self, exc_type, exc_val, exc_tb):
		ret = super().__exit__(exc_type, exc_val, exc_tb)
		if exc_type is None:
			# check task exception if no error occurs
			from chronicle_backup.utils import collection_utils
			for future in collection_utils.drain_queue(self.__all_futures):
				future.result()
		return ret
