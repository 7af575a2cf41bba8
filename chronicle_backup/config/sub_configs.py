from mcdreforged.api.utils import Serializable

from chronicle_backup.types.units import Duration


class RetryConfig(Serializable):
	max_attempts: int = 3
	delay: Duration = Duration('5s')
	continue_on_failure: bool = True


class DeduplicationConfig(Serializable):
	enabled: bool = True
	lookback_runs: int = 5
	verify_hash: bool = False  # re-hash the referenced blob before trusting a cache hit


class ArchiveConfig(Serializable):
	enabled: bool = False
	destination: str = './archives'
	gzip: bool = True
