class KurasiError(Exception):
    """
    Base of every error the client surfaces to the user.

    `message` is always human readable, it is what ends up in a toast.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RemoteError(KurasiError):
    """
    structured error returned by the data/auth/storage platform
    """


class TransportError(RemoteError):
    """
    platform unreachable, callers degrade to a safe default
    """


class AuthError(RemoteError):
    """
    sign in / sign up / sign out rejected by the identity provider
    """


class ValidationError(KurasiError):
    """
    bad user input, shown inline and never logged as a bug
    """


class PermissionDeniedError(KurasiError):
    """
    a write was attempted without the required eligibility
    """


class NotFoundError(KurasiError):
    """
    the referenced record does not exist
    """
