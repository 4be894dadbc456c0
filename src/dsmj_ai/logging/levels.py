"""
HUMAN logging level -- readable progress for toolkit operations.

Sits between INFO (20) and WARNING (30). It does not indicate severity; it
marks the lines a user wants to see while dsmj-ai installs, links or fetches.

Hierarchy:
    debug  (10) -> git commands, HTTP responses, per-path decisions
    info   (20) -> system operations (config loaded, registry scanned)
    human  (25) -> what the toolkit does: download, link, fetch
    warn   (30) -> non-fatal problems (stale partial install cleaned)
    error  (40) -> errors
"""

import logging

import structlog

HUMAN = 25
logging.addLevelName(HUMAN, "HUMAN")


def _human_method(self, message, *args, **kwargs):
    if self.isEnabledFor(HUMAN):
        self._log(HUMAN, message, args, **kwargs)


logging.Logger.human = _human_method

# structlog resolves numeric levels through this table (KeyError: 25 otherwise)
for _table in ("LEVEL_TO_NAME", "_LEVEL_TO_NAME"):
    _mapping = getattr(structlog.stdlib, _table, None)
    if isinstance(_mapping, dict):
        _mapping[HUMAN] = "human"
