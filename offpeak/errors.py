class CentralSystemError(Exception):
    """Base class for errors raised by the central system."""


class NotConnected(CentralSystemError):
    def __init__(self, identity: str):
        super().__init__(f"ChargePoint '{identity}' not connected")
        self.identity = identity


class UnsupportedNotification(CentralSystemError):
    def __init__(self, identity: str, action: str):
        super().__init__(f"{action} from '{identity}' is not implemented")
        self.identity = identity
        self.action = action


class CommandRejected(CentralSystemError):
    def __init__(self, identity: str, command: str, status):
        super().__init__(f"{command} rejected by '{identity}': {status}")
        self.identity = identity
        self.command = command
        self.status = status


class CommandFailed(CentralSystemError):
    def __init__(self, identity: str, command: str, cause: Exception | None = None):
        reason = f": {cause!r}" if cause is not None else ""
        super().__init__(f"{command} to '{identity}' failed{reason}")
        self.identity = identity
        self.command = command
        self.cause = cause


class AwaitTimeout(CentralSystemError):
    def __init__(self, identity: str, action: str, timeout: float):
        super().__init__(
            f"Timeout while waiting for {action} from '{identity}' ({timeout}s)"
        )
        self.identity = identity
        self.action = action
        self.timeout = timeout


class OrphanMeterValue(CentralSystemError):
    def __init__(self, identity: str, transaction_id: int | None = None):
        super().__init__(
            f"MeterValues from '{identity}' with no transaction to attach to"
            f" (transactionId={transaction_id})"
        )
        self.identity = identity
        self.transaction_id = transaction_id


class NoActiveTransaction(CentralSystemError):
    def __init__(self, identity: str):
        super().__init__(f"No transaction in progress on '{identity}'")
        self.identity = identity


class InvalidTrigger(CentralSystemError):
    def __init__(self, message: str):
        super().__init__(f"invalid message: {message}")
        self.message = message


class PersistenceError(CentralSystemError):
    """The persisted session snapshot cannot be read back."""
