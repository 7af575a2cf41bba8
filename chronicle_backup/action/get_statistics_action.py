from chronicle_backup.action import Action
from chronicle_backup.ledger.run_ledger import RunLedger
from chronicle_backup.types.run_statistics import RunStatisticsInfo


class GetStatisticsAction(Action[RunStatisticsInfo]):
	def __init__(self, backup_type: str):
		super().__init__()
		self.backup_type = backup_type

	def run(self) -> RunStatisticsInfo:
		return RunLedger().aggregate_statistics(self.backup_type)
