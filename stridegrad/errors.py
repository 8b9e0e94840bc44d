class StrideGradError(Exception):
    """Base class for errors raised by stridegrad."""


class OpError(StrideGradError):
    """
    An operator reported a validation diagnostic.

    Raised only by the convenience layer (:mod:`stridegrad.functional` and
    the ``Tensor`` operator overloads). ``Op.execute`` itself never raises
    for bad inputs; it records the diagnostic on its ``OpContext``.

    Attributes
    ----------
    op_name : str
        Name of the failing operator.
    diagnostic : str
        Human-readable validation message.
    """
    def __init__(self, op_name: str, diagnostic: str) -> None:
        super().__init__(diagnostic)
        self.op_name = op_name
        self.diagnostic = diagnostic


class GraphError(StrideGradError):
    """Invariant violation in the symbolic graph layer."""
