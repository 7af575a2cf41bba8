import functools
import re
from typing import Union, Tuple, Dict, NamedTuple

from chronicle_backup.utils import misc_utils


def _parse_number(s: str) -> Union[int, float]:
	try:
		value = int(s)
	except ValueError:
		try:
			value = float(s)
		except ValueError:
			raise ValueError('{!r} is not a number'.format(s)) from None
		if value.is_integer():
			value = round(value)
	return value


def _split_unit(s: str) -> Tuple[Union[int, float], str]:
	match = re.fullmatch(r'([-+.\d]+)\s*(\w*)', s.strip())
	if not match:
		raise ValueError('bad value {!r}'.format(s))
	return _parse_number(match.group(1)), match.group(2)


class ValueUnitPair(NamedTuple):
	value: float
	unit: str

	def to_str(self, ndigits: int = 2) -> str:
		if ndigits >= 0:
			return f'{self.value:.{ndigits}f}{self.unit}'
		return f'{self.value}{self.unit}'


class Duration(str):
	"""
	A duration string like "5s", "500ms" or "1.5m". Kept as a str so it serializes as-is
	"""
	_value: Union[float, int]

	__units = {
		('ms',): 1e-3,
		('', 's', 'sec'): 1,
		('m', 'min'): 60,
		('h', 'hour'): 60 * 60,
		('d', 'day'): 60 * 60 * 24,
	}

	@classmethod
	@functools.lru_cache
	def __get_unit_map(cls) -> Dict[str, float]:
		ret = {}
		for units, v in cls.__units.items():
			for k in units:
				ret[k] = v
		return ret

	@classmethod
	def parse_unit(cls, unit: str) -> float:
		ret = cls.__get_unit_map().get(unit.lower())
		if ret is None:
			raise ValueError('unknown unit {!r}'.format(unit))
		return ret

	def __new__(cls, s: Union[int, float, str]):
		if isinstance(s, str):
			value, unit = _split_unit(s)
			duration = value * cls.parse_unit(unit)
			if isinstance(duration, float) and duration.is_integer():
				duration = int(duration)
			obj = super().__new__(cls, s)
		elif isinstance(s, (float, int)):
			duration = s
			obj = super().__new__(cls, f'{s}s')
		else:
			raise TypeError(type(s))
		obj._value = duration
		return obj

	@property
	def value(self) -> Union[float, int]:
		"""
		Duration in second
		"""
		return self._value

	def __repr__(self) -> str:
		return misc_utils.represent(self, attrs={'value': self._value})


class ByteCount(int):
	_bsi = {'': 1, 'Ki': 2 ** 10, 'Mi': 2 ** 20, 'Gi': 2 ** 30, 'Ti': 2 ** 40, 'Pi': 2 ** 50}

	def auto_format(self) -> ValueUnitPair:
		val = int(self)
		if val < 0:
			uvp = ByteCount(-val).auto_format()
			return ValueUnitPair(-uvp.value, uvp.unit)
		ret = ValueUnitPair(val, 'B')
		for unit, k in self._bsi.items():
			if val >= k:
				ret = ValueUnitPair(val / k, unit + 'B')
			else:
				break
		return ret

	def auto_str(self, ndigits: int = 2) -> str:
		return self.auto_format().to_str(ndigits=ndigits)
