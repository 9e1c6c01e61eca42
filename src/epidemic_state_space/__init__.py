from .version_info import VERSION as __version__  # noqa: F401

from .errors import (  # noqa: F401
    ConfigurationError,
    EpidemicModelError,
    InferenceInfeasibility,
    NumericDomainError,
)
from .state import ModelParameters, ObservationSeries, Trajectory  # noqa: F401
from .simulate.simulator import SimulationResult, simulate  # noqa: F401
from .model.spec import StateSpaceModelSpec  # noqa: F401
from .inference.seed import SeedSpec, derive_seed  # noqa: F401
from .inference.driver import PosteriorSamples, fit  # noqa: F401
