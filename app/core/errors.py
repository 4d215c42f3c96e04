"""Billing error taxonomy; rendered by the exception handler in app.main."""


class BillingError(Exception):
    status_code = 400
    code = "BILLING_ERROR"
    message = "Payment request could not be processed."

    def __init__(self, message: str | None = None, *, code: str | None = None, status_code: int | None = None):
        self.message = message or self.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(BillingError):
    code = "VALIDATION_ERROR"
    message = "Invalid request."


class NotFoundError(BillingError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Payment record not found."


class GatewayError(BillingError):
    status_code = 502
    code = "GATEWAY_ERROR"
    message = "Payment gateway error. Please try again."


class SignatureError(BillingError):
    code = "INVALID_SIGNATURE"
    message = "Payment verification failed. Invalid signature."


class AmountMismatchError(BillingError):
    code = "AMOUNT_MISMATCH"
    message = "Paid amount does not match the order amount."


class FraudRejection(BillingError):
    code = "FRAUD_REJECTED"
    message = "Payment submission rejected."


class SubscriptionRequired(BillingError):
    status_code = 403
    code = "SUBSCRIPTION_EXPIRED"
    message = "Your subscription has expired. Please renew to continue using DairyPro."


class TamperDetected(BillingError):
    status_code = 403
    code = "SUBSCRIPTION_INVALID"
    message = "Subscription validation failed. Please contact support."
