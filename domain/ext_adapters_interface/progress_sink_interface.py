# coding: utf-8
"""@brief Module declaring the interface to which must comply all concrete implementations of progress sinks
"""
import abc
import enum

class ProgressStatus(enum.Enum):
    """@brief Discrete status values reported along with a completion percentage"""
    IDLE = 'Idle'
    BUSY = 'Busy'
    PROGRAMMING = 'Programming'
    VERIFYING = 'Verifying'
    ERROR = 'Error'

class ProgressSinkInterface(metaclass=abc.ABCMeta):
    """@brief Interface to which must comply all concrete implementations of progress sinks

    A progress sink is purely observational: it is invoked synchronously by the flasher and should return quickly
    """

    @abc.abstractmethod
    def on_progress(self, status: ProgressStatus, percent: int) -> None:
        """@brief Receive a progress event

        @param status The current ProgressStatus
        @param percent The completion percentage for the current status (0 to 100 inclusive)
        """
        raise NotImplementedError

    @classmethod
    def __subclasshook__(cls, subclass):
        if cls is not ProgressSinkInterface:
            return NotImplemented
        return (
            hasattr(subclass, "on_progress")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.on_progress
            )
            or NotImplemented
        )
