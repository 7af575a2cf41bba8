import enum
import sys

from typing_extensions import NoReturn


class ErrorReturnCodes(enum.Enum):
	invalid_argument = 1
	argparse_error = 2  # see argparse.ArgumentParser.error
	action_failed = 3
	run_not_found = 4
	configuration_error = 5
	preflight_error = 6
	already_running = 7
	run_not_succeeded = 8
	validation_failed = 9

	def sys_exit(self) -> NoReturn:
		sys.exit(self.value)
