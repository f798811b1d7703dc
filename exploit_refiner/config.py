"""
Configuration management for the exploit refinement engine
"""

import os
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Config:
    """Configuration for the refinement engine"""

    # Generation service (OpenAI-compatible Venice endpoint)
    generation_api_key: str = os.getenv("VENICE_API_KEY", os.getenv("REACT_APP_VENICE_API_KEY", ""))
    generation_base_url: str = os.getenv("VENICE_BASE_URL", "https://api.venice.ai/api/v1")
    default_model: str = os.getenv("VENICE_MODEL", "default")  # Venice maps this to an appropriate model
    temperature: float = 0.1
    max_tokens: int = 4000
    request_timeout: int = 300  # 5 minutes
    min_request_interval: float = 1.0
    max_requests_per_run: int = 200

    # Refinement loop
    max_cycles: int = 5

    # Execution sandbox - Hardhat project the generated tests run in
    workspace_path: str = os.getenv("HARDHAT_WORKSPACE", os.getcwd())
    artifact_dir: str = os.getenv("ARTIFACT_DIR", "test")  # relative to workspace_path
    harness_command: Optional[List[str]] = None  # Set in __post_init__
    harness_env: Optional[Dict[str, str]] = None  # Set in __post_init__
    execution_timeout: float = 60.0
    watchdog_grace: float = 5.0
    max_output_bytes: int = 1024 * 1024

    # Harness node
    harness_rpc_url: str = os.getenv("HARDHAT_RPC_URL", "http://localhost:8545")

    # Parallel scheduling
    stagger_interval: float = 0.5

    # Persistence
    runs_dir: str = os.getenv("RUNS_DIR", "runs")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = "exploit_refiner.log"

    def __post_init__(self):
        """Post-initialization processing"""
        if self.harness_command is None:
            # {artifact} is replaced with the artifact path relative to the workspace
            self.harness_command = ["npx", "hardhat", "test", "{artifact}"]

        if self.harness_env is None:
            # Skip type checking so each run only pays for transpilation
            self.harness_env = {"TS_NODE_TRANSPILE_ONLY": "true"}

    def validate(self) -> bool:
        """Validate configuration"""
        if not self.generation_api_key:
            raise ValueError("Missing required configuration field: VENICE_API_KEY")

        if self.max_cycles < 1:
            raise ValueError(f"max_cycles must be at least 1, got {self.max_cycles}")

        if self.execution_timeout <= 0 or self.watchdog_grace < 0:
            raise ValueError("execution_timeout must be positive and watchdog_grace non-negative")

        if self.stagger_interval < 0:
            raise ValueError(f"stagger_interval must be non-negative, got {self.stagger_interval}")

        if "{artifact}" not in " ".join(self.harness_command):
            raise ValueError("harness_command must contain an {artifact} placeholder")

        return True

    def get_artifact_root(self) -> str:
        """Absolute directory generated tests are written to"""
        return os.path.join(self.workspace_path, self.artifact_dir)

    def to_dict(self) -> Dict[str, Any]:
        """Non-secret settings, for run metadata"""
        return {
            "model": self.default_model,
            "temperature": self.temperature,
            "max_cycles": self.max_cycles,
            "execution_timeout": self.execution_timeout,
            "watchdog_grace": self.watchdog_grace,
            "stagger_interval": self.stagger_interval,
            "harness_command": self.harness_command,
            "harness_rpc_url": self.harness_rpc_url,
        }

    @classmethod
    def from_env(cls) -> 'Config':
        """Create config from environment variables"""
        return cls()
