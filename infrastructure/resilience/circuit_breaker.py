# infrastructure/resilience/circuit_breaker.py
from enum import Enum
from datetime import datetime, timedelta
from typing import Callable, Any, Optional, Dict
import asyncio
from dataclasses import dataclass
import asyncpg
from domain.exceptions import ExternalServiceDegraded
from shared.logging import logger, log_circuit_breaker_event

class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: timedelta = timedelta(minutes=2)
    success_threshold: int = 2
    timeout_seconds: float = 20.0

class CircuitOpenError(ExternalServiceDegraded):
    def __init__(self, service_name: str):
        super().__init__(service_name, "circuit breaker is OPEN")

class ExternalCallTimeout(ExternalServiceDegraded):
    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(service_name, f"call exceeded {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds

class CircuitBreakerRegistry:
    """Breakers for external services, optionally persisted in PostgreSQL"""

    def __init__(self, db_pool: Optional[asyncpg.Pool] = None):
        self.db_pool = db_pool
        self.breakers: Dict[str, 'CircuitBreaker'] = {}

    async def get_breaker(self, service_name: str, config: CircuitBreakerConfig) -> 'CircuitBreaker':
        if service_name not in self.breakers:
            breaker = CircuitBreaker(service_name, config, self.db_pool)
            await breaker.initialize()
            self.breakers[service_name] = breaker
        return self.breakers[service_name]

    async def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        status = {}
        for name, breaker in self.breakers.items():
            status[name] = await breaker.get_status()
        return status

class CircuitBreaker:
    def __init__(self, service_name: str, config: CircuitBreakerConfig,
                 db_pool: Optional[asyncpg.Pool] = None):
        self.service_name = service_name
        self.config = config
        self.db_pool = db_pool
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.success_count = 0

    async def initialize(self):
        """Load state from database when persistence is configured"""
        if self.db_pool is None:
            return
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS circuit_breaker_state (
                        service_name VARCHAR(100) PRIMARY KEY,
                        state VARCHAR(20) NOT NULL,
                        failure_count INTEGER DEFAULT 0,
                        last_failure_time TIMESTAMP,
                        success_count INTEGER DEFAULT 0,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                row = await conn.fetchrow("""
                    SELECT state, failure_count, last_failure_time, success_count
                    FROM circuit_breaker_state
                    WHERE service_name = $1
                """, self.service_name)

                if row:
                    self.state = CircuitState(row['state'])
                    self.failure_count = row['failure_count']
                    self.last_failure_time = row['last_failure_time']
                    self.success_count = row['success_count']
        except Exception as e:
            logger.warning("Failed to load circuit breaker state",
                           service_name=self.service_name, error=str(e))

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                await self._transition(CircuitState.HALF_OPEN)
                self.success_count = 0
            else:
                raise CircuitOpenError(self.service_name)

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs),
                timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            await self._on_failure()
            raise ExternalCallTimeout(self.service_name, self.config.timeout_seconds) from e
        except Exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if not self.last_failure_time:
            return False
        return datetime.utcnow() - self.last_failure_time > self.config.recovery_timeout

    async def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.failure_count = 0
                await self._transition(CircuitState.CLOSED)
        elif self.state == CircuitState.CLOSED and self.failure_count > 0:
            self.failure_count = 0
            await self._persist_state()

    async def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = datetime.utcnow()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            await self._transition(CircuitState.OPEN)
        else:
            await self._persist_state()

    async def _transition(self, new_state: CircuitState):
        if new_state != self.state:
            log_circuit_breaker_event(
                service_name=self.service_name,
                event_type="state_change",
                state=new_state.value,
                failure_count=self.failure_count,
                additional_context={"previous_state": self.state.value}
            )
        self.state = new_state
        await self._persist_state()

    async def _persist_state(self):
        if self.db_pool is None:
            return
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO circuit_breaker_state
                    (service_name, state, failure_count, last_failure_time, success_count, updated_at)
                    VALUES ($1, $2, $3, $4, $5, CURRENT_TIMESTAMP)
                    ON CONFLICT (service_name) DO UPDATE SET
                    state = $2, failure_count = $3, last_failure_time = $4,
                    success_count = $5, updated_at = CURRENT_TIMESTAMP
                """, self.service_name, self.state.value, self.failure_count,
                    self.last_failure_time, self.success_count)
        except Exception as e:
            logger.error("Failed to persist circuit breaker state",
                         service_name=self.service_name, error=str(e))

    async def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "success_count": self.success_count
        }

    async def force_open(self):
        """Manually open circuit breaker for testing or emergency"""
        self.last_failure_time = datetime.utcnow()
        await self._transition(CircuitState.OPEN)

    async def force_close(self):
        """Manually close circuit breaker for testing or recovery"""
        self.failure_count = 0
        self.success_count = 0
        await self._transition(CircuitState.CLOSED)
