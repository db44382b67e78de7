"""
Exceptions and warnings raised by fssemPython.
"""


class FSSEMError(Exception):
    """Base class for all fssemPython errors."""


class InvalidInputError(FSSEMError, ValueError):
    """Malformed dimensions, out-of-range candidates or bad hyperparameters."""


class NumericalError(FSSEMError, ArithmeticError):
    """A linear solve or step-size computation broke down.

    Parameters
    ----------
    message : str
        Description of the failure.
    iteration : int, optional
        Outer PALM iteration at which the failure happened.
    block : str, optional
        Block being updated ('B', 'F', 'sigma2', 'ridge', ...).
    """

    def __init__(self, message, iteration=None, block=None):
        self.iteration = iteration
        self.block = block
        where = []
        if block is not None:
            where.append(f"block={block}")
        if iteration is not None:
            where.append(f"iteration={iteration}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class ConvergenceWarning(UserWarning):
    """PALM stopped before meeting its convergence tolerance."""
