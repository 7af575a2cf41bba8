import queue
from typing import TypeVar, Iterator

_T = TypeVar('_T')


def drain_queue(q: 'queue.Queue[_T]') -> Iterator[_T]:
	while True:
		try:
			yield q.get(block=False)
		except queue.Empty:
			break
