"""
Custom exceptions for blockport.

Every fatal condition of the integration pipeline has its own class so callers
can tell which stage failed. Each class records the stage name it belongs to.
"""


class BlockportError(Exception):
    """Base exception class for blockport errors"""

    stage: str = "integrate"

    def __init__(self, message: str, details: str = "") -> None:
        self.message = message
        self.details = details
        super().__init__(f"{message}\n\n{details}" if details else message)


class InvalidSource(BlockportError):
    """Raised when a source locator is neither a git url, a shorthand nor a local path"""

    stage = "resolve"


class CloneFailed(BlockportError):
    stage = "clone"


class UpdateFailed(BlockportError):
    """Raised by the git client when refreshing a cached checkout fails.

    The cache manager recovers from this one and keeps the stale checkout.
    """

    stage = "update"


class MissingSourceFiles(BlockportError):
    stage = "resolve"


class ManifestMissing(BlockportError):
    stage = "manifest"


class InvalidManifest(BlockportError):
    stage = "manifest"


class DependencyConflict(BlockportError):
    stage = "dependencies"


class InstallFailed(BlockportError):
    stage = "dependencies"


class GenerationFailed(BlockportError):
    stage = "generate"


class SubBlockGenerationFailed(BlockportError):
    stage = "sub-blocks"


class RouteWriteFailed(BlockportError):
    stage = "write-route"


class ContainerWriteFailed(BlockportError):
    stage = "append-import"
