"""Common machinery for the model-facing tools.

Two layers, kept apart on purpose:

* **Capability functions** (``async def f(ctx, ...) -> ToolResult``) call a
  provider and always return a ``ToolResult`` envelope.  The ``capability``
  decorator turns credential, API and unexpected errors into failure
  envelopes with a ``code``.  ``StoreError`` is the one exception that is
  re-raised: a database outage fails the turn.
* **ToolAdapter** parses the model's arguments (a dict or a JSON string),
  validates them with the tool's pydantic argument model, runs the
  capability and renders the envelope as text for the model.  ``execute``
  never raises for bad input.

Adapters are built per request around a ``ToolContext`` that carries the
user id, so nothing about the current user lives in module state.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from mnemo.config import EMAIL_SIGNATURE
from mnemo.services.credentials import (
    PROVIDER_LABELS,
    CredentialResolver,
    InvalidTokenError,
    NoAccountError,
)
from mnemo.services.github_client import GitHubClient
from mnemo.services.google_client import GoogleClient
from mnemo.services.linkedin_client import LinkedInClient
from mnemo.services.memory import MemoryService
from mnemo.services.provider_client import ProviderAPIError
from mnemo.services.store import StoreError

logger = logging.getLogger(__name__)


# ── Result envelope ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str) -> ToolResult:
        return cls(success=False, error=error, code=code)


@dataclass
class ToolContext:
    """Everything a tool needs for one user's request."""

    user_id: str
    resolver: CredentialResolver
    google: GoogleClient
    github: GitHubClient
    linkedin: LinkedInClient
    memory: MemoryService
    email_signature: str = EMAIL_SIGNATURE


# ── Guidance ────────────────────────────────────────────────────────


def no_account_guidance(provider: str) -> str:
    label = PROVIDER_LABELS.get(provider, provider.title())
    return (
        f"You don't have a {label} account connected. Please connect your "
        f"{label} account in the Providers section of your dashboard."
    )


def reconnect_guidance(provider: str) -> str:
    label = PROVIDER_LABELS.get(provider, provider.title())
    return (
        f"Your {label} account needs to be reconnected. Please go to Settings "
        f"and reconnect your {label} account."
    )


def capability(
    provider: str,
    family: str,
    *,
    not_found: tuple[str, str] | None = None,
) -> Callable[[Callable[..., Awaitable[ToolResult]]], Callable[..., Awaitable[ToolResult]]]:
    """Convert errors raised by a capability function into failure envelopes.

    Args:
        provider: Credential provider id (``google``, ``github``...).
        family: Prefix for ``<FAMILY>_API_ERROR`` / ``<FAMILY>_ERROR`` codes.
        not_found: ``(code, message)`` returned for an upstream 404.
    """
    label = PROVIDER_LABELS.get(provider, provider.title())

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(ctx: ToolContext, *args, **kwargs) -> ToolResult:
            try:
                return await func(ctx, *args, **kwargs)
            except StoreError:
                raise
            except NoAccountError:
                return ToolResult.fail(
                    no_account_guidance(provider), f"NO_{provider.upper()}_ACCOUNT",
                )
            except InvalidTokenError:
                return ToolResult.fail(reconnect_guidance(provider), "INVALID_TOKEN")
            except ProviderAPIError as exc:
                if not_found and exc.status_code == 404:
                    return ToolResult.fail(not_found[1], not_found[0])
                status = f" (HTTP {exc.status_code})" if exc.status_code else ""
                return ToolResult.fail(
                    f"The {label} API returned an error{status}. "
                    "You can try again in a moment.",
                    f"{family}_API_ERROR",
                )
            except Exception:
                logger.exception("%s failed for user %s", func.__name__, ctx.user_id)
                return ToolResult.fail(
                    f"Something went wrong while talking to {label}.", f"{family}_ERROR",
                )

        return wrapper

    return decorator


# ── Argument handling ───────────────────────────────────────────────


def _as_list(value: Any) -> Any:
    return [value] if isinstance(value, str) else value


# A lone string where a list is expected becomes a one-item list
StrList = Annotated[list[str], BeforeValidator(_as_list)]


class ToolArgs(BaseModel):
    """Base for tool argument models.

    Field names are snake_case; the model reads and writes their camelCase aliases.
    Unknown keys are dropped and numbers are accepted where text is expected.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class NoArgs(ToolArgs):
    pass


def parse_args(model: type[ToolArgs], raw: Mapping[str, Any] | str | None) -> ToolArgs:
    """Validate *raw* (a dict or a JSON string) into *model*.

    Raises ``pydantic.ValidationError``.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return model.model_validate({})
    if isinstance(raw, str):
        return model.model_validate_json(raw)
    return model.model_validate(dict(raw))


def describe_validation_error(exc: ValidationError) -> str:
    missing: list[str] = []
    problems: list[str] = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"])
        if error["type"] == "missing":
            missing.append(field)
        elif field:
            problems.append(f"'{field}': {error['msg']}")
        else:
            problems.append(error["msg"])
    if missing:
        problems.insert(0, f"Missing required field(s): {', '.join(missing)}")
    return "; ".join(problems)


# ── Adapter ─────────────────────────────────────────────────────────


def render_failure(result: ToolResult) -> str:
    return f"{result.error} (code: {result.code})"


@dataclass(frozen=True)
class ToolSpec:
    """Static description of one tool.

    ``run`` receives the context and a validated ``args_schema`` instance;
    ``render`` turns a successful envelope's ``data`` into text.
    """

    name: str
    description: str
    args_schema: type[ToolArgs]
    run: Callable[[ToolContext, Any], Awaitable[ToolResult]]
    render: Callable[[Any], str]


class ToolAdapter:
    def __init__(self, spec: ToolSpec, ctx: ToolContext):
        self.spec = spec
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.spec.name

    async def call(self, raw_args: Mapping[str, Any] | str | None) -> ToolResult:
        try:
            args = parse_args(self.spec.args_schema, raw_args)
        except ValidationError as exc:
            return ToolResult.fail(
                f"Invalid arguments for {self.spec.name}: {describe_validation_error(exc)}.",
                "INVALID_ARGUMENTS",
            )
        logger.info("Tool %s called for user %s", self.spec.name, self.ctx.user_id)
        return await self.spec.run(self.ctx, args)

    async def execute(self, raw_args: Mapping[str, Any] | str | None = None) -> str:
        """Run the tool and return the text the model will read."""
        result = await self.call(raw_args)
        if not result.success:
            logger.info(
                "Tool %s failed for user %s: %s", self.spec.name, self.ctx.user_id, result.code,
            )
            return render_failure(result)
        return self.spec.render(result.data)

    def as_langchain_tool(self) -> BaseTool:
        async def _run(**kwargs: Any) -> str:
            return await self.execute(kwargs)

        return StructuredTool.from_function(
            coroutine=_run,
            name=self.spec.name,
            description=self.spec.description,
            args_schema=self.spec.args_schema.model_json_schema(),
        )
