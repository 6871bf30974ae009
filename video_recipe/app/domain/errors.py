from __future__ import annotations


class PipelineError(Exception):
    pass


class DecodeError(PipelineError):
    def __init__(self, source: str, reason: str = "Video could not be decoded"):
        super().__init__(f"{reason}: {source}")
        self.source = source
        self.reason = reason


class BackendUnavailable(PipelineError):
    def __init__(self, backend: str, reason: str):
        super().__init__(f"AI backend '{backend}' unavailable: {reason}")
        self.backend = backend
        self.reason = reason


class ModelNotFound(BackendUnavailable):
    def __init__(self, backend: str, model: str, hint: str | None = None):
        reason = f"model '{model}' not found"
        if hint:
            reason = f"{reason}. {hint}"
        super().__init__(backend, reason)
        self.model = model


class UploadConflict(PipelineError):
    def __init__(self, bucket: str, path: str):
        super().__init__(f"Destination already exists: {bucket}/{path}")
        self.bucket = bucket
        self.path = path


class ParseDegraded(PipelineError):
    """Recorded, not raised, when model output needed a fallback strategy."""

    def __init__(self, strategy: str, raw_excerpt: str = ""):
        super().__init__(f"Model output recovered with fallback strategy '{strategy}'")
        self.strategy = strategy
        self.raw_excerpt = raw_excerpt


class JobFailed(PipelineError):
    def __init__(self, recipe_id: str, message: str):
        super().__init__(message)
        self.recipe_id = recipe_id
        self.message = message


class StorageError(PipelineError):
    pass


class RepositoryError(PipelineError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Row store error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class InvalidTransitionError(PipelineError):
    def __init__(self, recipe_id: str, current: str, target: str):
        super().__init__(f"Invalid status transition for {recipe_id}: {current} -> {target}")
        self.recipe_id = recipe_id
        self.current = current
        self.target = target


class JobNotFoundError(PipelineError):
    def __init__(self, recipe_id: str):
        super().__init__(f"Job not found: {recipe_id}")
        self.recipe_id = recipe_id


class ConfigurationError(PipelineError):
    def __init__(self, errors: list[str]):
        super().__init__(f"Configuration errors: {', '.join(errors)}")
        self.errors = errors
