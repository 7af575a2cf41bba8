import dataclasses
import enum
from typing import Optional, List

from chronicle_backup.db.values import RunStrategy, RunOutcome
from chronicle_backup.types.manifest import ManifestEntry, Manifest
from chronicle_backup.types.run_info import RunInfo


class FileResultKind(enum.Enum):
	stored = enum.auto()
	deduplicated = enum.auto()
	failed = enum.auto()


@dataclasses.dataclass(frozen=True)
class FileResult:
	"""
	What happened to one candidate file. Every processed candidate produces exactly one
	"""
	kind: FileResultKind
	entry: ManifestEntry
	attempts: int = 1

	@property
	def failed(self) -> bool:
		return self.kind == FileResultKind.failed

	@property
	def error(self) -> Optional[str]:
		return self.entry.error


@dataclasses.dataclass(frozen=True)
class RunResult:
	run_id: str
	backup_type: str
	requested_strategy: RunStrategy
	strategy: RunStrategy
	parent_run_id: Optional[str]
	outcome: RunOutcome
	message: str
	committed: bool

	run_info: Optional[RunInfo] = None
	manifest: Optional[Manifest] = None
	failures: List[FileResult] = dataclasses.field(default_factory=list)
	missing_paths: List[str] = dataclasses.field(default_factory=list)
	skipped_reserved: List[str] = dataclasses.field(default_factory=list)
	unchanged_count: int = 0

	@property
	def downgraded(self) -> bool:
		return self.requested_strategy != self.strategy

	@property
	def failed_count(self) -> int:
		return len(self.failures)
