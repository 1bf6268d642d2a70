"""
Exceptions raised by the recommendation engine
"""


class RecommenderError(Exception):
    """Base class for engine errors"""


class ExperimentValidationError(RecommenderError):
    """Experiment configuration is malformed"""


class DuplicateExperimentError(ExperimentValidationError):
    """An active experiment with the same name already exists"""


class ExperimentNotFoundError(RecommenderError):
    """No experiment with the given id"""


class ModelNotTrainedError(RecommenderError):
    """A model was asked to predict before being trained"""


class InvalidInteractionError(RecommenderError):
    """Interaction payload is malformed"""
