"""lampctl - priority-arbitrated lamp mode controller.

This package drives a single indicator lamp from a set of prioritized modes.
Modes are switched on and off by cron schedules and by count files written
by other programs; the command of the highest-priority active mode is kept
in a JSON file read by the lamp driver.
"""

__version__ = "0.1.0"
