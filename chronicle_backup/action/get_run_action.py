from chronicle_backup.action import Action
from chronicle_backup.db.access import DbAccess
from chronicle_backup.types.run_info import RunInfo


class GetRunAction(Action[RunInfo]):
	def __init__(self, run_id: str):
		super().__init__()
		self.run_id = run_id

	def run(self) -> RunInfo:
		with DbAccess.open_session() as session:
			return RunInfo.of(session.get_run(self.run_id))
