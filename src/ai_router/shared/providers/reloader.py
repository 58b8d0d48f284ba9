"""Runtime reload of the provider directory from its configuration source."""

from __future__ import annotations

from collections.abc import Callable, Mapping

from ai_router.ports.outbound import ProviderAdapter
from ai_router.shared.providers.directory import DirectoryLoader, ProviderDirectory
from ai_router.shared.providers.router import Router


class ProviderReloader:
    """Re-reads AI_PROVIDER_CONFIG and swaps the router's directory when it changed.

    Parsing is cached by the raw value, so an unchanged source is a no-op.  A
    source that fails to parse raises ``ConfigurationError`` and the router
    keeps serving the previous directory.
    """

    def __init__(
        self,
        router: Router,
        loader: DirectoryLoader,
        *,
        source: Callable[[], str],
        build_adapters: Callable[[ProviderDirectory], Mapping[str, ProviderAdapter]] | None = None,
    ) -> None:
        self._router = router
        self._loader = loader
        self._source = source
        self._build_adapters = build_adapters

    def reload(self) -> bool:
        """Return ``True`` when a different directory was swapped in."""
        directory = self._loader.load(self._source())
        if directory is self._router.directory:
            return False
        adapters = self._build_adapters(directory) if self._build_adapters else None
        self._router.replace_directory(directory, adapters)
        return True
