"""Exception hierarchy for shutter_dispatch"""


class DispatchException(Exception):
    pass


class LinkException(DispatchException, OSError):
    def __init__(self, message: str, link: str | None = None):
        super().__init__(f"{link}: {message}" if link else message)
        self.link = link


class LinkOpenError(LinkException):
    pass


class NotOpenError(LinkException):
    pass


class LinkIoError(LinkException):
    pass


class ReadError(LinkIoError):
    pass


class WriteError(LinkIoError):
    pass


class LinkClosed(LinkIoError):
    pass


class UnknownDestinationError(DispatchException, LookupError):
    pass


class MalformedTriggerError(DispatchException, ValueError):
    pass


class ConfigInvalid(DispatchException, ValueError):
    pass
