# jobview/exports/cancellation.py

import threading
from typing import Callable, Optional

from jobview.utils.logger import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """
    Cancellation signal for one export task.

    Set in-process by the scheduler when a cancel request arrives, or
    discovered through ``read_flag`` (the persisted cancel flag) when the request
    was handled by another process. Workers check it at batch boundaries.
    """

    def __init__(self, task_id: str, read_flag: Optional[Callable[[], bool]] = None):
        self.task_id = task_id
        self._event = threading.Event()
        self._read_flag = read_flag

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("Cancellation signalled", task_id=self.task_id)
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._read_flag is not None and self._read_flag():
            self._event.set()
            return True
        return False
