import time


class Timer:
	"""
	Wall clock stopwatch, restartable
	"""

	def __init__(self):
		self.__start_time = time.time()

	def restart(self):
		self.__start_time = time.time()

	def get_elapsed(self) -> float:
		return time.time() - self.__start_time
