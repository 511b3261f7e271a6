class ServiceError(Exception):
    """A request the service refuses. Carries the HTTP status to answer with."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(ServiceError):
    status_code = 404


class OrderRejected(ServiceError):
    pass
