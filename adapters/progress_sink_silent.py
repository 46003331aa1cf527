# coding: utf-8
"""@brief Module implementing a non-drawing progress sink
"""
from domain.ext_adapters_interface.progress_sink_interface import ProgressSinkInterface, ProgressStatus

class SilentProgressSink(ProgressSinkInterface):
    """@brief Concrete implementation of ProgressSinkInterface discarding all events (used when debug logs are output)"""
    def on_progress(self, status: ProgressStatus, percent: int) -> None:
        pass
