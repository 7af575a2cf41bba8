from typing import Any, Optional


def represent(obj: Any, *, attrs: Optional[dict] = None) -> str:
	if attrs is None:
		attrs = {name: value for name, value in vars(obj).items() if not name.startswith('_')}
	kv = []
	for name, value in attrs.items():
		kv.append(f'{name}={value}')
	return '{}({})'.format(type(obj).__name__, ', '.join(kv))


def make_thread_name(name: str) -> str:
	from chronicle_backup import constants
	return f'CB@{constants.INSTANCE_ID}-{name}'


def one_line(e: BaseException) -> str:
	"""
	A single-line description of an exception, for run summaries
	"""
	msg = ' '.join(str(e).split())
	if len(msg) == 0:
		return type(e).__name__
	return '{}: {}'.format(type(e).__name__, msg)
