from .models import FailureKind


class ConfirmationError(Exception):
    kind: FailureKind = FailureKind.ACTIVATION_FAILED


class InvalidRequestError(ConfirmationError):
    kind = FailureKind.INVALID_REQUEST


class GatewayUnavailableError(ConfirmationError):
    kind = FailureKind.GATEWAY_UNAVAILABLE


class PaymentNotSuccessfulError(ConfirmationError):
    kind = FailureKind.PAYMENT_NOT_SUCCESSFUL


class UserNotFoundError(ConfirmationError):
    kind = FailureKind.USER_NOT_FOUND


class AlreadyActivatedError(ConfirmationError):
    kind = FailureKind.ALREADY_ACTIVATED


class ActivationFailedError(ConfirmationError):
    kind = FailureKind.ACTIVATION_FAILED
