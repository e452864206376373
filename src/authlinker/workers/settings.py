"""arq worker settings module.

Import path for arq CLI: arq authlinker.workers.settings.WorkerSettings
"""

from __future__ import annotations

from authlinker.workers.sweeper import WorkerSettings

__all__ = ["WorkerSettings"]
