"""Error taxonomy shared by the stores, the auth layer and the routes.

Every error carries the HTTP status it is rendered with; ``main`` installs
a single handler for the whole hierarchy.
"""
from typing import Optional


class CityGuardianError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CityGuardianError):
    status_code = 400
    default_message = "Invalid input"


class InvalidType(ValidationError):
    default_message = "Invalid file type"


class TooLarge(ValidationError):
    default_message = "File too large"


class Unauthorized(CityGuardianError):
    status_code = 401
    default_message = "Unauthorized"


class NoSuchUser(Unauthorized):
    default_message = "No user found"


class InvalidPassword(Unauthorized):
    default_message = "Invalid password"


class Forbidden(CityGuardianError):
    status_code = 403
    default_message = "Forbidden"


class InactiveAccount(Forbidden):
    default_message = "Account disabled"


class NotFound(CityGuardianError):
    status_code = 404
    default_message = "Not found"


class DuplicateEmail(CityGuardianError):
    status_code = 409
    default_message = "User with this email already exists"


class InvalidTransition(CityGuardianError):
    status_code = 409
    default_message = "Status transition not allowed"


class UpstreamFailure(CityGuardianError):
    status_code = 502
    default_message = "Failed to upload images"
