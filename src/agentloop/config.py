"""Configuration settings for agentloop."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_SHELL_COMMANDS = (
    "ls,cat,echo,pwd,grep,find,head,tail,wc,date,whoami,git,python,python3,node,npm"
)


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or overrides."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True
    )

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_timeout_seconds: int = Field(
        default=60, validation_alias="OPENAI_TIMEOUT_SECONDS"
    )
    openai_extra_headers: str | None = Field(
        default=None, validation_alias="OPENAI_EXTRA_HEADERS"
    )
    default_model: str = Field(default="gpt-4.1", validation_alias="DEFAULT_MODEL")
    fast_model: str = Field(default="gpt-4.1-mini", validation_alias="FAST_MODEL")
    reasoning_model: str = Field(default="gpt-4.1", validation_alias="REASONING_MODEL")
    planning_model: str = Field(default="gpt-4.1", validation_alias="PLANNING_MODEL")
    coding_model: str = Field(default="gpt-4.1", validation_alias="CODING_MODEL")
    embedding_model: str = Field(
        default="text-embedding-3-small", validation_alias="EMBEDDING_MODEL"
    )
    enable_vector_embeddings: bool = Field(
        default=False, validation_alias="ENABLE_VECTOR_EMBEDDINGS"
    )
    cost_per_token: float = Field(default=0.00001, validation_alias="COST_PER_TOKEN")

    max_iterations: int = Field(default=50, validation_alias="MAX_ITERATIONS")
    max_execution_time_seconds: float = Field(
        default=300.0, validation_alias="MAX_EXECUTION_TIME_SECONDS"
    )
    max_cost_per_session: float = Field(
        default=5.0, validation_alias="MAX_COST_PER_SESSION"
    )
    executor_max_attempts: int = Field(default=5, validation_alias="EXECUTOR_MAX_ATTEMPTS")
    task_max_retries: int = Field(default=1, validation_alias="TASK_MAX_RETRIES")
    task_retry_backoff_seconds: float = Field(
        default=1.0, validation_alias="TASK_RETRY_BACKOFF_SECONDS"
    )
    max_failed_tasks_before_replan: int = Field(
        default=3, validation_alias="MAX_FAILED_TASKS_BEFORE_REPLAN"
    )
    consolidation_interval: int = Field(default=10, validation_alias="CONSOLIDATION_INTERVAL")
    reflect_on_tasks: bool = Field(default=False, validation_alias="REFLECT_ON_TASKS")

    enable_shell_sandbox: bool = Field(default=True, validation_alias="ENABLE_SHELL_SANDBOX")
    allowed_shell_commands: str = Field(
        default=DEFAULT_ALLOWED_SHELL_COMMANDS, validation_alias="ALLOWED_SHELL_COMMANDS"
    )
    max_shell_execution_seconds: float = Field(
        default=30.0, validation_alias="MAX_SHELL_EXECUTION_SECONDS"
    )
    max_shell_output_bytes: int = Field(
        default=1024 * 1024, validation_alias="MAX_SHELL_OUTPUT_BYTES"
    )

    working_memory_size: int = Field(default=10, validation_alias="WORKING_MEMORY_SIZE")
    episodic_memory_size: int = Field(default=100, validation_alias="EPISODIC_MEMORY_SIZE")
    enable_persistent_memory: bool = Field(
        default=False, validation_alias="ENABLE_PERSISTENT_MEMORY"
    )
    memory_db_path: str = Field(
        default="./workspace/memory.sqlite3", validation_alias="MEMORY_DB_PATH"
    )

    workspace_dir: str = Field(default="./workspace", validation_alias="WORKSPACE_DIR")

    def shell_whitelist(self) -> list[str]:
        return [
            item.strip()
            for item in (self.allowed_shell_commands or "").split(",")
            if item.strip()
        ]


DEFAULT_SETTINGS = Settings()
