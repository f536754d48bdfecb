"""Error taxonomy shared by every component.

Components raise these; ``main.py`` turns them into JSON responses with
the matching HTTP status.
"""


class FoodShareError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(FoodShareError):
    status_code = 400


class NotFound(FoodShareError):
    status_code = 404


class ActorNotFound(NotFound):
    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class Forbidden(FoodShareError):
    status_code = 403


class Conflict(FoodShareError):
    status_code = 409


class ServiceUnavailable(FoodShareError):
    status_code = 503
