"""
Provider Registry - Central point for provider dependency injection.

Usage:
    # At startup
    register_provider(MlxLmAdapter(api_base="http://localhost:8000/"), name="mlx")

    # Elsewhere
    provider = get_provider("mlx")
    async for chunk in provider.stream_complete(...):
        ...
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from mlx_bridge.adapters.base import CompletionProvider

_providers: dict[str, "CompletionProvider"] = {}


def register_provider(provider: "CompletionProvider", name: str = "default") -> None:
    """
    Register a provider instance by name.

    Registering under an existing name replaces the previous provider.
    """
    _providers[name] = provider


def get_provider(name: Optional[str] = None) -> "CompletionProvider":
    """
    Get a registered provider.

    Args:
        name: Provider name. When omitted, the only registered provider
            is returned.

    Raises:
        RuntimeError: If nothing matches
    """
    if not _providers:
        raise RuntimeError(
            "No provider registered. Call register_provider() at startup."
        )

    if name is not None:
        try:
            return _providers[name]
        except KeyError:
            raise RuntimeError(
                f"No provider named '{name}'. Registered: {', '.join(sorted(_providers))}"
            ) from None

    if len(_providers) > 1:
        raise RuntimeError(
            f"Multiple providers registered ({', '.join(sorted(_providers))}); pass a name."
        )
    return next(iter(_providers.values()))


def clear_providers() -> None:
    """
    Clear all registered providers.

    Primarily useful for testing to reset state between tests.
    """
    _providers.clear()


def register_default_provider(**overrides) -> "CompletionProvider":
    """
    Register an MlxLmAdapter built from MLX_* environment variables.

    Keyword overrides (e.g. api_base from the command line) win over the
    environment. Returns the registered provider.
    """
    from mlx_bridge.adapters.mlx_lm import MlxLmAdapter
    from mlx_bridge.config import load_config_from_env

    overrides = {k: v for k, v in overrides.items() if v is not None}
    provider = MlxLmAdapter(load_config_from_env(), **overrides)
    register_provider(provider, name=MlxLmAdapter.provider_name)
    return provider
