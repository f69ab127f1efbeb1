"""Error types raised by the service layer and rendered as JSON by the app."""


class CRMError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        payload = {'success': False, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(CRMError):
    status_code = 400


class AuthenticationError(CRMError):
    status_code = 401


class PermissionDenied(CRMError):
    status_code = 403


class NotFoundError(CRMError):
    status_code = 404


class ConflictError(CRMError):
    status_code = 409


class TenantResolutionError(CRMError):
    status_code = 404


class DatabaseError(CRMError):
    status_code = 500
