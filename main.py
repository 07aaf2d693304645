import sys
import traceback

from tunnelward.ui.manager_cli import cli as manager_cli
from tunnelward.ui.monitor_cli import cli as monitor_cli


def _unhandled_exception(exc_type, exc_value, exc_tb):
    """Print unhandled exceptions with traceback so cron mail shows the cause."""
    if exc_type is KeyboardInterrupt:
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    msg = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    print("Unhandled exception:\n" + msg, file=sys.stderr, flush=True)


if __name__ == "__main__":
    """
    Entry point for Tunnelward.

        python main.py create alice 7          # account manager
        python main.py monitor-cli health      # supervisor commands
    """
    sys.excepthook = _unhandled_exception

    if len(sys.argv) > 1 and sys.argv[1] == "monitor-cli":
        monitor_cli(args=sys.argv[2:], prog_name="main.py monitor-cli")
    else:
        manager_cli(prog_name="main.py")
