import random
import statistics
import unittest

from chronicle_backup.ledger.statistics import incremental_mean
from chronicle_backup.types.units import Duration, ByteCount
from chronicle_backup.utils import conversion_utils, misc_utils


class UnitsTestCase(unittest.TestCase):
	def test_0_duration(self):
		self.assertEqual(5, Duration('5s').value)
		self.assertEqual(0.5, Duration('500ms').value)
		self.assertEqual(90, Duration('1.5m').value)
		self.assertEqual(3600, Duration('1h').value)
		self.assertEqual(0, Duration('0s').value)
		self.assertEqual('5s', Duration(5))
		self.assertEqual('500ms', Duration('500ms'))
		with self.assertRaises(ValueError):
			Duration('5 parsecs')
		with self.assertRaises(ValueError):
			Duration('soon')

	def test_1_byte_count(self):
		self.assertEqual('512.00B', ByteCount(512).auto_str())
		self.assertEqual('15.00MiB', ByteCount(15 * 2 ** 20).auto_str())
		self.assertEqual('1.5KiB', ByteCount(1536).auto_str(ndigits=1))

	def test_2_incremental_mean(self):
		rnd = random.Random(42)
		values = [rnd.uniform(0, 1e9) for _ in range(100)]
		mean = 0.0
		for i, value in enumerate(values):
			mean = incremental_mean(mean, value, i + 1)
		self.assertAlmostEqual(statistics.mean(values), mean, delta=1e-3)

		with self.assertRaises(ValueError):
			incremental_mean(0, 1, 0)

	def test_3_run_id(self):
		# 2023-11-14 22:13:20 UTC
		self.assertEqual('20231114-221320-000007', conversion_utils.timestamp_us_to_run_id(1700000000_000007))
		self.assertLess(
			conversion_utils.timestamp_us_to_run_id(1700000000_999999),
			conversion_utils.timestamp_us_to_run_id(1700000001_000000),
		)

	def test_4_one_line(self):
		self.assertEqual('OSError: disk full', misc_utils.one_line(OSError('disk\nfull')))
		self.assertEqual('ValueError', misc_utils.one_line(ValueError()))


if __name__ == '__main__':
	unittest.main()
