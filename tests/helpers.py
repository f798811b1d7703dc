"""
Sample contract and test sources shared by the test modules
"""

from exploit_refiner.models import Attempt, StrategyTier


VAULT_SOURCE = """
// SPDX-License-Identifier: MIT
pragma solidity ^0.8.0;

interface IERC20 {
    function transfer(address to, uint256 amount) external returns (bool);
}

contract Vault {
    mapping(address => uint256) public balances;
    address public owner;

    constructor() {
        owner = msg.sender;
    }

    function deposit() external payable {
        balances[msg.sender] += msg.value;
    }

    function withdraw(uint256 amount) external {
        require(balances[msg.sender] >= amount, "insufficient");
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] -= amount;
    }

    function _audit() internal view returns (uint256) {
        return address(this).balance;
    }
}
"""

REENTRANCY_TEST = """
import { expect } from "chai";
import { ethers } from "hardhat";

describe("Vault reentrancy", function () {
  it("drains the vault", async function () {
    const [owner, attacker] = await ethers.getSigners();
    const Vault = await ethers.getContractFactory("Vault");
    const vault = await Vault.deploy();
    await vault.connect(attacker).deposit({ value: ethers.parseEther("1") });
    await vault.connect(attacker).withdraw(ethers.parseEther("1"));
    expect(await vault.balances(attacker.address)).to.equal(0);
  });
});
"""


def make_attempt(content: str, number: int = 1, storage_id: str = None) -> Attempt:
    return Attempt(
        number=number,
        content=content,
        storage_id=storage_id or f"attempt-{number}",
        tier=StrategyTier.for_attempt(number)
    )
