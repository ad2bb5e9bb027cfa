"""
Inference Gateway
Prompt in, schema-validated object out, with a timeout and a single reduced-context retry.

Every analyzer receives a gateway through its constructor. The gateway owns the
shared concurrency ceiling for outbound inference calls, so all analyzers and
all pairs compete for the same small pool of slots.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, Tuple, Type, TypeVar

from loguru import logger
from pydantic import ValidationError
from pydantic_ai import Agent
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.models import Model

from deal_intel.config import Settings, get_settings
from deal_intel.utils.context_budget import estimate_tokens
from deal_intel.utils.observability import log_inference_call

# Type variable for generic agent output
T = TypeVar("T")


class InferenceError(Exception):
    """Base class for typed inference failures."""

    def __init__(self, agent_name: str, message: str):
        self.agent_name = agent_name
        super().__init__(f"{agent_name}: {message}")


class InferenceTimeoutError(InferenceError):
    """The call did not finish within the configured timeout, even after degrading."""
    pass


class InferenceValidationError(InferenceError):
    """The model's output could not be validated against the target schema."""
    pass


class InferenceUpstreamError(InferenceError):
    """Anything else the model provider raised (HTTP errors, auth, network)."""
    pass


@dataclass
class InferenceRequest(Generic[T]):
    """
    One call to the external model.

    Attributes:
        agent_name: Analyzer making the call (used for logs and agent caching)
        model: PydanticAI model name or Model instance
        instructions: System-level instructions for the agent
        prompt: Full-context user prompt
        output_type: Schema the response must validate against
        degraded_prompt: Reduced-context prompt for the emergency retry
    """
    agent_name: str
    model: str | Model
    instructions: str
    prompt: str
    output_type: Type[T]
    degraded_prompt: Optional[str] = None


class InferenceGateway(ABC):
    """Contract every analyzer depends on."""

    @abstractmethod
    async def generate(self, request: InferenceRequest[T]) -> T:
        """
        Execute the request and return the validated output.

        Raises:
            InferenceTimeoutError: Timed out, including after the degrade retry
            InferenceValidationError: Output did not match the schema
            InferenceUpstreamError: Provider failure
        """
        pass


AgentFactory = Callable[[InferenceRequest[Any]], Any]


def build_agent(request: InferenceRequest[Any]) -> Agent:
    return Agent(
        request.model,
        output_type=request.output_type,
        instructions=request.instructions,
    )


_CONTEXT_OVERFLOW_MARKERS = ("context length", "context_length", "maximum context", "too many tokens")


def _is_context_overflow(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _CONTEXT_OVERFLOW_MARKERS)


class PydanticAIGateway(InferenceGateway):
    """
    Gateway backed by PydanticAI agents.

    Usage:
        >>> gateway = PydanticAIGateway()
        >>> score = await gateway.generate(InferenceRequest(
        ...     agent_name="ActivityImpactScorer",
        ...     model="openai:gpt-4o-mini",
        ...     instructions="Score the activity.",
        ...     prompt=prompt,
        ...     output_type=ImpactScore,
        ... ))
    """

    def __init__(
        self,
        settings: Settings | None = None,
        agent_factory: AgentFactory | None = None,
        model_override: str | Model | None = None,
    ):
        """
        Args:
            settings: Settings instance (uses global settings if None)
            agent_factory: Builds the agent for a request (PydanticAI Agent by default)
            model_override: Force every request onto one model (tests, local runs)
        """
        self.settings = settings or get_settings()
        self.timeout_seconds = self.settings.inference_timeout_seconds
        self.safe_input_tokens = self.settings.safe_input_tokens
        self._agent_factory = agent_factory or build_agent
        self._model_override = model_override
        self._semaphore = asyncio.Semaphore(self.settings.inference_concurrency)
        self._agents: Dict[Tuple[Any, ...], Any] = {}

    def _agent_for(self, request: InferenceRequest[Any]) -> Any:
        if self._model_override is not None:
            request = InferenceRequest(
                agent_name=request.agent_name,
                model=self._model_override,
                instructions=request.instructions,
                prompt=request.prompt,
                output_type=request.output_type,
                degraded_prompt=request.degraded_prompt,
            )
        cache_key = (request.agent_name, str(request.model), request.output_type, request.instructions)
        agent = self._agents.get(cache_key)
        if agent is None:
            agent = self._agent_factory(request)
            self._agents[cache_key] = agent
        return agent

    async def generate(self, request: InferenceRequest[T]) -> T:
        prompt = request.prompt
        degraded = False

        estimated = estimate_tokens(prompt)
        if request.degraded_prompt and estimated > self.safe_input_tokens:
            logger.warning(
                f"✂️ {request.agent_name}: prompt ~{estimated} tokens exceeds safe limit "
                f"{self.safe_input_tokens}, using reduced context"
            )
            prompt = request.degraded_prompt
            degraded = True

        try:
            return await self._call(request, prompt, degraded)
        except (InferenceTimeoutError, InferenceUpstreamError) as e:
            can_degrade = request.degraded_prompt is not None and not degraded
            if not can_degrade:
                raise
            if isinstance(e, InferenceUpstreamError) and not _is_context_overflow(e):
                raise
            logger.warning(f"🛟 {request.agent_name}: retrying once with reduced context ({e})")
            return await self._call(request, request.degraded_prompt, True)

    async def _call(self, request: InferenceRequest[T], prompt: str, degraded: bool) -> T:
        agent = self._agent_for(request)
        model_name = str(self._model_override or request.model)
        estimated = estimate_tokens(prompt)

        async with self._semaphore:
            start_time = time.time()
            try:
                result = await asyncio.wait_for(agent.run(prompt), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                self._log_failure(request, model_name, start_time, degraded, estimated, "timeout")
                raise InferenceTimeoutError(
                    request.agent_name, f"timed out after {self.timeout_seconds}s"
                ) from e
            except (UnexpectedModelBehavior, ValidationError) as e:
                self._log_failure(request, model_name, start_time, degraded, estimated, str(e))
                raise InferenceValidationError(request.agent_name, str(e)) from e
            except Exception as e:
                self._log_failure(request, model_name, start_time, degraded, estimated, str(e))
                raise InferenceUpstreamError(request.agent_name, str(e)) from e

        log_inference_call(
            agent_name=request.agent_name,
            model=model_name,
            duration_ms=(time.time() - start_time) * 1000,
            success=True,
            degraded=degraded,
            estimated_input_tokens=estimated,
        )
        return result.output

    def _log_failure(
        self,
        request: InferenceRequest[Any],
        model_name: str,
        start_time: float,
        degraded: bool,
        estimated: int,
        error: str,
    ) -> None:
        log_inference_call(
            agent_name=request.agent_name,
            model=model_name,
            duration_ms=(time.time() - start_time) * 1000,
            success=False,
            degraded=degraded,
            estimated_input_tokens=estimated,
            error=error,
        )
