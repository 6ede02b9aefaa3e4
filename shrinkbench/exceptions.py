"""
Error taxonomy shared by every solver in the package.

All errors are raised to the immediate caller.  The model comparator turns
them into failed comparison rows; nothing in the library retries.
"""


class ShrinkbenchError(Exception):
    """Base class for every error raised by shrinkbench."""


class ConfigurationError(ShrinkbenchError, ValueError):
    """Invalid hyperparameter or input configuration."""


class InsufficientDataError(ShrinkbenchError, ValueError):
    """Fewer observations than the requested fit needs."""

    def __init__(self, n_obs, n_params, message=None):
        self.n_obs = n_obs
        self.n_params = n_params
        if message is None:
            message = (
                f"Only {n_obs} observation(s) for {n_params} parameter(s); "
                f"at least {n_params + 1} are required."
            )
        super().__init__(message)


class RankDeficiencyError(ShrinkbenchError):
    """
    Design matrix columns are linearly dependent.

    Attributes
    ----------
    redundant : dict
        Maps each redundant column name to the list of earlier column
        names it is a linear combination of.
    rank : int
        Numerical column rank of the matrix.
    columns : list of str
        Sorted union of every column involved in a dependency.
    """

    def __init__(self, redundant, rank):
        self.redundant = dict(redundant)
        self.rank = rank
        involved = set(self.redundant)
        for partners in self.redundant.values():
            involved.update(partners)
        self.columns = sorted(involved)
        details = "; ".join(
            f"{name} ~ {' + '.join(partners) if partners else '0'}"
            for name, partners in self.redundant.items()
        )
        super().__init__(
            f"Design matrix has rank {rank}; "
            f"{len(self.redundant)} redundant column(s): {details}"
        )


class DegenerateFitError(ShrinkbenchError):
    """A penalized path produced only null (or identical) models."""

    def __init__(self, penalty, lambdas, message=None):
        self.penalty = penalty
        self.lambdas = lambdas
        if message is None:
            message = (
                f"{penalty} path is degenerate over all {len(lambdas)} "
                f"penalty strengths (no informative coefficients)."
            )
        super().__init__(message)


class DivergedError(ShrinkbenchError):
    """
    Gradient descent loss became non-finite or grew without bound.

    Attributes
    ----------
    iteration : int
        Last iteration whose full-data MSE was finite (0 = the start).
    learning_rate : float
    batch_size : int
    mse : float
        The MSE that triggered the stop (may be inf / nan).
    trace : ConvergenceTrace or None
        Finite prefix of the convergence trace.
    """

    def __init__(self, iteration, learning_rate, batch_size, mse, trace=None):
        self.iteration = iteration
        self.learning_rate = learning_rate
        self.batch_size = batch_size
        self.mse = mse
        self.trace = trace
        super().__init__(
            f"Gradient descent diverged after iteration {iteration} "
            f"(learning_rate={learning_rate}, batch_size={batch_size}, "
            f"mse={mse})"
        )
