import datetime
import time


def datetime_to_str(date: datetime.datetime, *, decimal: bool = False) -> str:
	fmt = '%Y-%m-%d %H:%M:%S'
	if decimal:
		fmt += '.%f'
	return date.strftime(fmt)


def timestamp_to_local_date_us(timestamp_us: int) -> datetime.datetime:
	return datetime.datetime.fromtimestamp(timestamp_us / 1e6)


def timestamp_to_local_date_str_us(timestamp_us: int, *, decimal: bool = False) -> str:
	date = timestamp_to_local_date_us(timestamp_us)
	return datetime_to_str(date, decimal=decimal)


def now_us() -> int:
	return time.time_ns() // 1000


def timestamp_us_to_run_id(timestamp_us: int) -> str:
	"""
	e.g. 1700000000123456 -> 20231115-061320-123456, in UTC
	"""
	date = datetime.datetime.fromtimestamp(timestamp_us // 1_000_000, tz=datetime.timezone.utc)
	return '{}-{:06d}'.format(date.strftime('%Y%m%d-%H%M%S'), timestamp_us % 1_000_000)
