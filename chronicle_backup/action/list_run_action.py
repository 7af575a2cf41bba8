from abc import ABC
from typing import Optional, List, TypeVar

from chronicle_backup.action import Action
from chronicle_backup.db.access import DbAccess
from chronicle_backup.types.run_info import RunInfo

_T = TypeVar('_T')


class _ListRunActionBase(Action[_T], ABC):
	def __init__(self, *, backup_type: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None):
		super().__init__()
		self.backup_type = backup_type
		self.limit = limit
		self.offset = offset


class ListRunAction(_ListRunActionBase[List[RunInfo]]):
	"""
	Committed runs, newest first
	"""
	def run(self) -> List[RunInfo]:
		with DbAccess.open_session() as session:
			runs = session.list_runs(backup_type=self.backup_type, limit=self.limit, offset=self.offset)
			return [RunInfo.of(run) for run in runs]


class ListRunIdAction(_ListRunActionBase[List[str]]):
	def run(self) -> List[str]:
		with DbAccess.open_session() as session:
			runs = session.list_runs(backup_type=self.backup_type, limit=self.limit, offset=self.offset)
			return [run.id for run in runs]
