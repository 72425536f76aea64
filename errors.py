class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MarketplaceError):
    status_code = 400


class ConflictError(MarketplaceError):
    status_code = 400


class NotFoundError(MarketplaceError):
    status_code = 404


class AuthError(MarketplaceError):
    status_code = 401


class CouponError(MarketplaceError):
    """A coupon exists but cannot be applied to this cart."""
    status_code = 400


class ApplicabilityError(CouponError):
    pass


class ThresholdError(CouponError):
    pass


class ExpiredError(CouponError):
    pass


class ExhaustedError(CouponError):
    pass


class InactiveError(CouponError):
    pass


class UpstreamError(MarketplaceError):
    """An external collaborator (email, geocoder, AI) failed."""
    status_code = 502
