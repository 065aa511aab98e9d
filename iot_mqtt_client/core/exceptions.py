from typing import Optional


class SessionError(Exception):
    """
    Base for all session-related errors. Carries:
      - detail: human readable description of what went wrong
      - client_id: identifier of the client that hit the error
      - broker: "host:port" of the broker involved
      - error_code: transport-reported numeric code, when there is one
      - topic: topic involved in a publish/subscribe/unsubscribe failure
    """
    default_code: Optional[int] = None

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        client_id: Optional[str] = None,
        broker: Optional[str] = None,
        error_code: Optional[int] = None,
        topic: Optional[str] = None,
    ):
        self.detail = detail
        self.client_id = client_id
        self.broker = broker
        self.error_code = error_code if error_code is not None else self.default_code
        self.topic = topic

        parts = []
        if error_code is not None or self.default_code is not None:
            parts.append(f"code={self.error_code}")
        if client_id:
            parts.append(f"client_id={client_id!r}")
        if broker:
            parts.append(f"broker={broker!r}")
        if topic:
            parts.append(f"topic={topic!r}")

        message = f"{detail!r} {self.__class__.__name__}"
        if parts:
            message = f"{message}: " + ", ".join(parts)
        super().__init__(message)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}("
            f"detail={self.detail!r}, "
            f"client_id={self.client_id!r}, "
            f"broker={self.broker!r}, "
            f"error_code={self.error_code!r}, "
            f"topic={self.topic!r}"
            f")"
        )


class ConnectFailure(SessionError):
    """The transport rejected, timed out, or abandoned a connect attempt."""


class ConnectionLost(SessionError):
    """An established session dropped without an explicit disconnect.

    ``error_code == 0`` is reported by transports for a normal close.
    """

    @property
    def is_normal_close(self) -> bool:
        return self.error_code == 0


class NotConnected(SessionError):
    """An operation was attempted while the session is not connected."""


class OperationError(SessionError):
    """A publish, subscribe or unsubscribe failed at the transport level."""


def as_session_error(
    error: BaseException | str | None,
    error_cls: type[SessionError],
    **context,
) -> SessionError:
    """
    Normalize whatever a transport reported into ``error_cls``.

    Errors that already have the requested type pass through untouched; anything
    else is wrapped, keeping the original as ``__cause__``.
    """
    if isinstance(error, error_cls):
        return error
    if isinstance(error, SessionError):
        context.setdefault("error_code", error.error_code)
        wrapped = error_cls(error.detail, **context)
    else:
        wrapped = error_cls(str(error) if error is not None else None, **context)
    if isinstance(error, BaseException):
        wrapped.__cause__ = error
    return wrapped
