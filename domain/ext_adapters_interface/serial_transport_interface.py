# coding: utf-8
"""@brief Module declaring the interface to which must comply all concrete implementations of serial byte-stream transports
"""
import abc

class SerialTransport(metaclass=abc.ABCMeta):
    """@brief Interface to which must comply all concrete implementations of serial transports"""

    @abc.abstractmethod
    def clear(self) -> None:
        """@brief Discard any pending (not yet read) incoming bytes"""
        raise NotImplementedError

    @abc.abstractmethod
    def write(self, buffer: bytes) -> None:
        """@brief Send bytes to the remote device

        @param buffer The bytes to send
        """
        raise NotImplementedError

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """@brief Block until @p size bytes have been received (or until the transport's timeout expires)

        @param size The number of bytes to read
        @return The bytes received. Less than @p size bytes are returned on timeout
        """
        raise NotImplementedError

    @abc.abstractmethod
    def set_rts(self, level: bool) -> None:
        """@brief Drive the RTS control line"""
        raise NotImplementedError

    @abc.abstractmethod
    def set_dtr(self, level: bool) -> None:
        """@brief Drive the DTR control line"""
        raise NotImplementedError

    @classmethod
    def __subclasshook__(cls, subclass):
        if cls is not SerialTransport:
            return NotImplemented
        return (
            hasattr(subclass, "clear")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.clear
            )
            and hasattr(subclass, "write")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.write
            )
            and hasattr(subclass, "read")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.read
            )
            and hasattr(subclass, "set_rts")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.set_rts
            )
            and hasattr(subclass, "set_dtr")
            and callable(  # pylint: disable=consider-using-ternary
                subclass.set_dtr
            )
            or NotImplemented
        )
