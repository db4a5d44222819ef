"""Configuration models describing BiliSorter settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class BiliSorterBaseModel(BaseModel):
    """Shared configuration for BiliSorter Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class AuthSettings(BiliSorterBaseModel):
    """Session credentials for the collection API.

    Attributes:
        sessdata: ``SESSDATA`` session cookie value.
        bili_jct: CSRF token cookie required for write operations.
        dede_user_id: Numeric user id cookie; resolved from the nav API when empty.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    sessdata: Optional[str] = None
    bili_jct: Optional[str] = None
    dede_user_id: Optional[str] = None


class LLMSettings(BiliSorterBaseModel):
    """Classification provider configuration.

    Attributes:
        provider: Which provider classifies items.
        claude_api_key: Credential for the Claude provider.
        claude_model: Claude model name.
        gemini_api_key: Credential for the Gemini provider.
        gemini_model: Gemini model name.
        temperature: Sampling temperature for Gemini requests.
        max_tokens: Maximum response tokens for Claude requests.
        gemini_max_tokens: Maximum response tokens for Gemini requests.
    """

    provider: Literal["gemini", "claude"] = "gemini"
    claude_api_key: Optional[str] = None
    claude_model: str = "claude-3-5-haiku-latest"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-3-flash-preview"
    temperature: float = 0.2
    max_tokens: int = 4_096
    gemini_max_tokens: int = 8_192

    @property
    def active_api_key(self) -> Optional[str]:
        """Return the API key of the selected provider."""
        return self.gemini_api_key if self.provider == "gemini" else self.claude_api_key

    @property
    def active_model(self) -> str:
        """Return the model name of the selected provider."""
        return self.gemini_model if self.provider == "gemini" else self.claude_model

    @property
    def provider_label(self) -> str:
        """Return a display name for the selected provider."""
        return "Gemini" if self.provider == "gemini" else "Claude"


class SamplingOptions(BiliSorterBaseModel):
    """Folder sampling behaviour.

    Attributes:
        delay_seconds: Pause between two folder samples.
        page_size: Page size used to pick a random sample page.
        max_titles: Number of titles kept per folder sample.
    """

    delay_seconds: float = 1.0
    page_size: int = 20
    max_titles: int = 10


class SourceOptions(BiliSorterBaseModel):
    """Source-folder pagination behaviour.

    Attributes:
        pages_per_load: Number of pages fetched by one window.
        page_size: Items requested per page.
        page_delay_seconds: Pause between consecutive page fetches.
        retry_delay_seconds: Cooldown before retrying a rate-limited page.
    """

    pages_per_load: int = 3
    page_size: int = 20
    page_delay_seconds: float = 0.5
    retry_delay_seconds: float = 3.0


class SuggestOptions(BiliSorterBaseModel):
    """AI classification batching behaviour.

    Attributes:
        batch_size: Items sent per provider request.
        max_retries: Retries per failed batch.
        backoff_seconds: Backoff unit; attempt ``n`` waits ``n`` units.
        max_suggestions: Suggestions kept per item.
        sample_titles_in_prompt: Sample titles shown per folder in the prompt.
        description_chars: Description characters shown per item in the prompt.
    """

    batch_size: int = Field(default=10, ge=1)
    max_retries: int = Field(default=2, ge=0)
    backoff_seconds: float = 2.0
    max_suggestions: int = Field(default=5, ge=1, le=5)
    sample_titles_in_prompt: int = 5
    description_chars: int = 100


class HTTPSettings(BiliSorterBaseModel):
    """Transport settings shared by the remote clients.

    Attributes:
        timeout_seconds: Per-request timeout applied by the transport.
        api_base: Collection API base URL.
        web_base: Site origin used for ``Referer``/``Origin`` headers.
        space_base: Origin used for folder management requests.
        claude_base: Claude API base URL.
        gemini_base: Gemini API base URL.
        user_agent: ``User-Agent`` header sent with collection requests.
    """

    timeout_seconds: float = 30.0
    api_base: str = "https://api.bilibili.com"
    web_base: str = "https://www.bilibili.com"
    space_base: str = "https://space.bilibili.com"
    claude_base: str = "https://api.anthropic.com"
    gemini_base: str = "https://generativelanguage.googleapis.com"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


class StateSettings(BiliSorterBaseModel):
    """Durable store location.

    Attributes:
        directory: Directory holding one JSON document per store key.
    """

    directory: str = "~/.bilisorter/state"


class LoggingSettings(BiliSorterBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
        file_name: Log file name inside the state directory; empty disables it.
    """

    level: str = "WARNING"
    max_size_mb: int = 10
    backup_count: int = 5
    file_name: str = "bilisorter.log"


class CLIOptions(BiliSorterBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        log_history_limit: Default number of operation log entries to display.
    """

    quiet_default: bool = False
    log_history_limit: int = 20


class BiliSorterConfig(BiliSorterBaseModel):
    """Top-level configuration struct for BiliSorter.

    Attributes:
        auth: Collection session credentials.
        llm: Classification provider settings.
        sampling: Folder sampling settings.
        source: Source pagination settings.
        suggest: Classification batching settings.
        http: Transport settings.
        state: Durable store settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
        source_folder_id: Preferred source folder when none has been fetched.
    """

    auth: AuthSettings = Field(default_factory=AuthSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    sampling: SamplingOptions = Field(default_factory=SamplingOptions)
    source: SourceOptions = Field(default_factory=SourceOptions)
    suggest: SuggestOptions = Field(default_factory=SuggestOptions)
    http: HTTPSettings = Field(default_factory=HTTPSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)
    source_folder_id: Optional[int] = None


__all__ = [
    "BiliSorterBaseModel",
    "AuthSettings",
    "LLMSettings",
    "SamplingOptions",
    "SourceOptions",
    "SuggestOptions",
    "HTTPSettings",
    "StateSettings",
    "LoggingSettings",
    "CLIOptions",
    "BiliSorterConfig",
]
