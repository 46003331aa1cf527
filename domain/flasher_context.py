# coding: utf-8
"""@brief Module providing context for flasher code
"""

from domain.ext_adapters_interface.progress_sink_interface import ProgressSinkInterface, ProgressStatus

class FlasherContext:
    """@brief Flasher context container, including handlers for UI (logger, progress sink) and for target access
    @note This class is used for dependency injection
    """

    def __init__(self, name: str, progress_sink: ProgressSinkInterface, logger, target, retries: int = 0):
        """@brief Construct a Flasher context container
        @param name The name of the context
        @param progress_sink A sink receiving (status, percent) progress events, or None to discard them
        @param logger A logger to use
        @param target The bootloader protocol handler used to run commands on the remote target (see BootloaderProtocol)
        @param retries The number of retries allowed when the target rejects a row write
        """
        self.name = name
        self.progress_sink = progress_sink
        self.logger = logger
        if not callable(getattr(target, 'execute', None)):
            raise TypeError("target argument has no callable execute()")
        self.target = target
        self.retries = retries

    def give_progress(self, status: ProgressStatus, percent: int) -> None:
        """@brief Forward a progress event to the progress sink (if any)
        @param status The current ProgressStatus
        @param percent The completion percentage (0-100)
        """
        if self.progress_sink is not None:
            self.progress_sink.on_progress(status, percent)

    def execute_on_target(self, command):
        """@brief Execute a command on the target

        @param command The command to execute

        @return An optional return value from the command
        """
        return self.target.execute(command)
