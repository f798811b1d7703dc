"""
Harness Client - read-only view of the local Hardhat node tests run against
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from web3 import Web3
from eth_utils import to_checksum_address, is_address

from .config import Config


@dataclass(frozen=True)
class DeployedContract:
    """A contract recorded in the workspace's localhost deployments"""
    name: str
    address: str


class HarnessClient:
    """
    Web3 wrapper for the running harness node

    The node is started outside this process; when it is down the harness
    summary says so and refinement carries on.
    """

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._web3: Optional[Web3] = None

    def get_web3(self) -> Web3:
        if self._web3 is None:
            self._web3 = Web3(Web3.HTTPProvider(self.config.harness_rpc_url))
        return self._web3

    def is_node_running(self) -> bool:
        try:
            return self.get_web3().is_connected()
        except Exception as e:
            self.logger.debug(f"Harness node check failed: {str(e)}")
            return False

    def get_block_number(self) -> Optional[int]:
        try:
            return self.get_web3().eth.block_number
        except Exception as e:
            self.logger.error(f"Error getting harness block number: {str(e)}")
            return None

    def has_code(self, address: str) -> bool:
        if not is_address(address):
            return False
        try:
            return len(self.get_web3().eth.get_code(to_checksum_address(address))) > 0
        except Exception as e:
            self.logger.error(f"Error reading code at {address}: {str(e)}")
            return False

    def deployed_contracts(self, workspace: Optional[str] = None) -> List[DeployedContract]:
        """Contracts listed under deployments/localhost/*.json"""
        deployments_dir = Path(workspace or self.config.workspace_path) / "deployments" / "localhost"
        if not deployments_dir.is_dir():
            return []

        contracts = []
        for path in sorted(deployments_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text())
            except (OSError, ValueError) as e:
                self.logger.warning(f"Skipping unreadable deployment {path.name}: {e}")
                continue

            address = data.get("address") if isinstance(data, dict) else None
            if not address or not is_address(address):
                continue
            contracts.append(DeployedContract(name=path.stem, address=to_checksum_address(address)))
        return contracts

    def describe(self, workspace: Optional[str] = None) -> str:
        """Short harness summary included in generation requests"""
        if not self.is_node_running():
            self.logger.warning(f"⚠️ Harness node not reachable at {self.config.harness_rpc_url}")
            return f"Local node at {self.config.harness_rpc_url} is not reachable; deploy contracts inside the test."

        lines = [f"Local node: {self.config.harness_rpc_url} (block {self.get_block_number()})"]
        deployed = self.deployed_contracts(workspace)
        if deployed:
            lines.append("Deployed contracts:")
            lines.extend(f"- {contract.name} at {contract.address}" for contract in deployed)
        return "\n".join(lines)
