"""Error kinds raised by the cluster core."""


class ClusterError(Exception):
    """Base class for every failure the core reports to a caller."""


class ValidationError(ClusterError):
    pass


class NotFoundError(ClusterError):
    pass


class ConflictError(ClusterError):
    pass


class NodeBusyError(ConflictError):
    """Node still hosts pods or has an in-flight reservation."""


class NoCapacityError(ClusterError):
    pass


class InsufficientCapacityError(ClusterError):
    pass


class RuntimeDriverError(ClusterError):
    pass


class ProvisionError(RuntimeDriverError):
    pass


class DestroyError(RuntimeDriverError):
    pass


class UnitNotFoundError(RuntimeDriverError):
    pass
