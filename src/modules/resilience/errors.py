from typing import Optional


class LifelineError(Exception):
    pass

class CircuitOpenError(LifelineError):
    def __init__(self, key: str, next_attempt_time: Optional[float] = None):
        self.key = key
        self.next_attempt_time = next_attempt_time
        super().__init__(f"Circuit breaker is open for operation: {key}")

class HandlerTimeoutError(LifelineError):
    def __init__(self, handler_name: str, timeout: float):
        self.handler_name = handler_name
        self.timeout = timeout
        super().__init__(f"Shutdown handler timeout: {handler_name} ({timeout}s)")

class ConfigError(LifelineError):
    pass
