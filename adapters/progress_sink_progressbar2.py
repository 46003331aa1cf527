# coding: utf-8
"""@brief Module implementing a nice-looking textual progress display using python progressbar2
"""
import progressbar
from domain.ext_adapters_interface.progress_sink_interface import ProgressSinkInterface, ProgressStatus

class ProgressBar2Sink(ProgressSinkInterface):
    """@brief Concrete implementation of ProgressSinkInterface using python progressbar2

    One progress bar is drawn for each Programming/Verifying (or Busy) phase
    """
    DRAWN_STATUSES = (ProgressStatus.BUSY, ProgressStatus.PROGRAMMING, ProgressStatus.VERIFYING)

    def __init__(self, show_eta: bool = True):
        self.show_eta = show_eta
        self.status = None
        self.bar = None

    def _create_bar(self, status: ProgressStatus):
        widgets = [f'{status.value:<12}', progressbar.GranularBar(), ' ', progressbar.Percentage()]
        if self.show_eta:
            widgets += [" (", progressbar.AdaptiveETA(), ") "]
        return progressbar.ProgressBar(min_value=0, max_value=100, widgets=widgets)

    def _finish_bar(self):
        if self.bar is not None:
            self.bar.finish()
            self.bar = None

    def on_progress(self, status: ProgressStatus, percent: int) -> None:
        percent = max(0, min(100, percent))    # Saturate the value to bounds
        if status != self.status:
            self._finish_bar()
            self.status = status
            if status in self.DRAWN_STATUSES:
                self.bar = self._create_bar(status)
                self.bar.start()
        if self.bar is not None:
            self.bar.update(percent)
            if percent >= 100 and status != ProgressStatus.BUSY:
                self._finish_bar()
