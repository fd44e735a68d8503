class EngineNotFoundError(ValueError):
    pass


class EngineValidationError(ValueError):
    pass


class EngineConflictError(ValueError):
    pass


class InvalidSessionOperationError(EngineConflictError):
    pass


class SessionConcurrencyError(EngineConflictError):
    def __init__(self, *, stage: str):
        self.stage = stage
        super().__init__(f"session version conflict at {stage}")


class StorageUnavailableError(RuntimeError):
    pass
