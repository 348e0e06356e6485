"""Error kinds raised by stackrefactor."""


class RefactorError(Exception):
    """Base exception for refactor planning failures."""


class ValidationError(RefactorError):
    """Raised when user-provided input (mappings, locations, options) is invalid."""


class NotFoundError(RefactorError):
    """Raised when a stack, resource or toolkit bucket does not exist where required."""


class NodeNotFoundError(NotFoundError):
    """Raised when a node is not part of a resource graph."""

    def __init__(self, node: str):
        super().__init__(f"Node {node} not found in the graph")
        self.node = node


class NetworkError(RefactorError):
    """Raised when an AWS API call fails. The original exception is kept as __cause__."""


class TemplateTooLargeError(RefactorError):
    """Raised when a template must be uploaded to S3 but no staging bucket exists."""

    def __init__(self, stack_name: str, size: int, environment: str | None = None):
        target = f" {environment}" if environment else ""
        super().__init__(
            f"Template too large to refactor: the template for stack {stack_name!r} is "
            f"{round(size / 1024)}KiB. Templates larger than 50KiB must be uploaded to S3, "
            f"run 'cdk bootstrap{target}' to create a staging bucket."
        )
        self.stack_name = stack_name
        self.size = size
