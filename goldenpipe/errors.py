"""Error taxonomy for the golden image build orchestrator.

The API layer maps these onto HTTP status codes; everything below the API
raises them and never returns error values.
"""


class GoldenPipeError(RuntimeError):
    """Base class for orchestrator errors."""


class ValidationError(GoldenPipeError):
    """The request is malformed. Raised before any external call."""


class NotFoundError(GoldenPipeError):
    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} not found: {name}")


class CapacityError(GoldenPipeError):
    def __init__(self, limit: int, in_flight: int):
        self.limit = limit
        self.in_flight = in_flight
        super().__init__(
            f"too many concurrent builds: {in_flight} in flight, limit {limit}"
        )


class ProvisioningError(GoldenPipeError):
    def __init__(self, *, image: str, stage: str, resource: str, detail: str):
        self.image = image
        self.stage = stage
        self.resource = resource
        self.detail = detail
        super().__init__(
            f"provisioning failed image={image} stage={stage} resource={resource}: {detail}"
        )


class ExternalUnavailable(GoldenPipeError):
    """The cluster or control plane could not be reached."""


class OperationTimeout(GoldenPipeError):
    pass


class OperationCancelled(GoldenPipeError):
    pass


class RecordUnreadable(GoldenPipeError):
    """A stored image record exists but cannot be decoded."""

    def __init__(self, name: str, detail: str):
        self.name = name
        self.detail = detail
        super().__init__(f"image record {name} is unreadable: {detail}")
