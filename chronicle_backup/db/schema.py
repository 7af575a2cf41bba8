from typing import Optional, get_type_hints

from sqlalchemy import String, Integer, BigInteger, Float, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
	def __repr__(self) -> str:
		return '{}({})'.format(
			self.__class__.__name__,
			', '.join(f'{k}={v!r}' for k, v in self.to_dict().items()),
		)

	def to_dict(self) -> dict:
		values = {}
		for name, type_ in get_type_hints(self.__class__).items():
			if name == '__fields_end__':
				break
			if not name.startswith('_') and getattr(type_, '__origin__', None) == Mapped:
				values[name] = getattr(self, name)
		return values


class DbMeta(Base):
	__tablename__ = 'db_meta'

	magic: Mapped[int] = mapped_column(Integer, primary_key=True)
	version: Mapped[int] = mapped_column(Integer)


class BackupRun(Base):
	__tablename__ = 'backup_run'
	__table_args__ = (
		Index('ix_backup_run_type_strategy_started', 'backup_type', 'strategy', 'started_at'),
	)

	id: Mapped[str] = mapped_column(String, primary_key=True)
	backup_type: Mapped[str] = mapped_column(String)
	strategy: Mapped[str] = mapped_column(String)  # see enum RunStrategy
	parent_run_id: Mapped[Optional[str]] = mapped_column(String)
	outcome: Mapped[str] = mapped_column(String)  # see enum RunOutcome
	hash_method: Mapped[str] = mapped_column(String)

	started_at: Mapped[int] = mapped_column(BigInteger)  # timestamp in us
	finished_at: Mapped[int] = mapped_column(BigInteger)  # timestamp in us
	duration: Mapped[float] = mapped_column(Float)  # in seconds

	# sums over manifest entries, failed entries excluded
	file_count: Mapped[int] = mapped_column(BigInteger)
	total_bytes: Mapped[int] = mapped_column(BigInteger)

	failed_count: Mapped[int] = mapped_column(BigInteger)
	deduplicated_count: Mapped[int] = mapped_column(BigInteger)
	stored_bytes: Mapped[int] = mapped_column(BigInteger)  # bytes physically written by this run
	message: Mapped[str] = mapped_column(String)

	__fields_end__: bool


class RunStatistics(Base):
	__tablename__ = 'run_statistics'

	backup_type: Mapped[str] = mapped_column(String, primary_key=True)
	count: Mapped[int] = mapped_column(BigInteger)
	mean_size: Mapped[float] = mapped_column(Float)
	mean_duration: Mapped[float] = mapped_column(Float)
	succeeded_count: Mapped[int] = mapped_column(BigInteger)
	partially_failed_count: Mapped[int] = mapped_column(BigInteger)
	failed_count: Mapped[int] = mapped_column(BigInteger)
	aborted_count: Mapped[int] = mapped_column(BigInteger)

	__fields_end__: bool


class RunLease(Base):
	"""
	At most one row per backup type, held by the in-flight run of that type
	"""
	__tablename__ = 'run_lease'

	backup_type: Mapped[str] = mapped_column(String, primary_key=True)
	run_id: Mapped[str] = mapped_column(String, unique=True)
	hostname: Mapped[str] = mapped_column(String)
	pid: Mapped[int] = mapped_column(Integer)
	acquired_at: Mapped[int] = mapped_column(BigInteger)  # timestamp in us

	__fields_end__: bool
