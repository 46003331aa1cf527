# coding: utf-8
"""@brief Module implementing a stub progress sink
"""
from typing import List, Tuple

from domain.ext_adapters_interface.progress_sink_interface import ProgressSinkInterface, ProgressStatus

class MockProgressSink(ProgressSinkInterface):
    """@brief Concrete implementation of ProgressSinkInterface for unit test purposes, recording all events"""
    def __init__(self):
        self.events: List[Tuple[ProgressStatus, int]] = []

    def on_progress(self, status: ProgressStatus, percent: int) -> None:
        if percent < 0 or percent > 100:
            raise IndexError("Progress value out of bounds")
        self.events.append((status, percent))

    def get_statuses(self) -> List[ProgressStatus]:
        return [status for (status, _) in self.events]

    def get_last_event(self) -> Tuple[ProgressStatus, int]:
        return self.events[-1]
