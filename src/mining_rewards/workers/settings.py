"""arq worker settings module.

Import path for arq CLI: arq mining_rewards.workers.settings.WorkerSettings
"""

from __future__ import annotations

from mining_rewards.workers.completion_worker import WorkerSettings

__all__ = ["WorkerSettings"]
