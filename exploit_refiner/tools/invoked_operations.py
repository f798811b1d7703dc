"""
Extraction of the contract operations a generated test invokes
"""

import re
from typing import Callable, List, Optional, Set

from .code_sanitizer import CodeSanitizerTool


# Test-framework and ethers contract-object members that never name a target operation
FRAMEWORK_MEMBERS = frozenset({
    # mocha / chai
    "describe", "it", "before", "beforeEach", "after", "afterEach", "expect", "to", "be",
    "equal", "equals", "eq", "deep", "not", "true", "false", "above", "below", "least",
    "most", "gt", "lt", "gte", "lte", "reverted", "revertedWith", "revertedWithCustomError",
    "revertedWithoutReason", "emit", "withArgs", "changeEtherBalance", "changeEtherBalances",
    "changeTokenBalance", "changeTokenBalances", "closeTo", "include", "contain", "length",
    "lengthOf", "exist", "ok", "fail", "throw", "rejectedWith", "fulfilled",
    # ethers / hardhat
    "getSigners", "getSigner", "getContractFactory", "getContractAt", "getContract", "deploy",
    "deployed", "waitForDeployment", "deploymentTransaction", "getAddress", "connect", "wait",
    "parseEther", "formatEther", "parseUnits", "formatUnits", "getBalance", "sendTransaction",
    "send", "call", "estimateGas", "getBlock", "getBlockNumber", "getTransactionReceipt",
    "setBalance", "mine", "increaseTime", "impersonateAccount", "loadFixture", "request",
    "encodeFunctionData", "interface", "attach", "keccak256", "toUtf8Bytes", "solidityPackedKeccak256",
    "ZeroAddress", "MaxUint256", "id", "zeroPadValue", "toBigInt", "getCode", "getStorage",
    "deployContract", "staticCall", "populateTransaction", "getImpersonatedSigner",
    # js built-ins
    "log", "error", "warn", "info", "toString", "toNumber", "push", "pop", "map", "filter",
    "reduce", "forEach", "then", "catch", "finally", "all", "resolve", "reject", "join", "split",
    "slice", "includes", "indexOf", "keys", "values", "entries", "stringify", "parse", "from",
    "floor", "ceil", "max", "min", "abs", "pow", "now", "add", "sub", "mul", "div", "mod",
    "toFixed", "padStart", "substring", "replace", "trim", "isArray", "assign", "fill",
})

# hardhat-network-helpers; only skipped when no contract binding is recognisable,
# since a target contract may expose an operation with the same name
HELPER_MEMBERS = frozenset({
    "increase", "increaseTo", "latest", "latestBlock", "advanceBlock", "advanceBlockTo",
    "setNextBlockTimestamp", "setStorageAt", "setCode", "setNonce", "mineUpTo",
    "stopImpersonatingAccount", "takeSnapshot", "restore", "reset", "setBlockGasLimit",
    "setCoinbase", "setNextBlockBaseFeePerGas", "setPrevRandao", "dropTransaction",
})

# Library and helper namespaces, never the target contract
FRAMEWORK_RECEIVERS = frozenset({
    "ethers", "hre", "network", "time", "mine", "helpers", "upgrades", "console", "Math",
    "JSON", "Object", "Promise", "Number", "BigInt", "Array", "String", "Date", "expect",
    "assert", "chai", "anyValue", "this",
})

CALL_PATTERN = re.compile(r'\.\s*(\w+)\s*\(')
# `x = await F.deploy(`, `getContractFactory(`, `getContractAt(` or `deployContract(`
INSTANCE_PATTERN = re.compile(
    r'\b(\w+)\s*(?::\s*[\w.<>\[\]]+\s*)?=(?!=)[^;\n]*?'
    r'(?<![\w$])(?:getContractFactory|getContractAt|deployContract|deploy)\s*\('
)
CONNECT_TAIL_PATTERN = re.compile(r'\.\s*connect\s*\([^()]*\)\s*$')
RECEIVER_TAIL_PATTERN = re.compile(r'([\w$]+)$')

_sanitizer = CodeSanitizerTool(config=None)


def clean_test_code(code: str) -> str:
    """Test code without comments or string literal contents"""
    return _sanitizer.sanitize(code or "", strip_strings=True)


def contract_instances(code: str) -> Set[str]:
    """Identifiers bound to a deployed or attached contract, or to its factory"""
    return set(INSTANCE_PATTERN.findall(clean_test_code(code)))


def _receiver(code: str, dot_index: int) -> Optional[str]:
    """Name the member call at `dot_index` is made on, looking through `.connect(...)`"""
    head = code[:dot_index].rstrip()
    while True:
        connect = CONNECT_TAIL_PATTERN.search(head)
        if not connect:
            break
        head = head[:connect.start()].rstrip()
    match = RECEIVER_TAIL_PATTERN.search(head)
    return match.group(1) if match else None


def _contract_call_filter(instances: Set[str]) -> Callable[[Optional[str], str], bool]:
    if instances:
        return lambda receiver, name: receiver in instances and name not in FRAMEWORK_MEMBERS

    return lambda receiver, name: (
        receiver not in FRAMEWORK_RECEIVERS
        and name not in FRAMEWORK_MEMBERS
        and name not in HELPER_MEMBERS
    )


def extract_invoked_operations(code: str) -> List[str]:
    """
    Ordered member calls made on the target contract, with comments and
    string literals ignored. Consecutive duplicates collapse so unrolled
    loops match their rolled form.

    When the test binds contract instances (factory, deploy, attach), only
    calls on those identifiers count.
    """
    cleaned = clean_test_code(code)
    is_contract_call = _contract_call_filter(set(INSTANCE_PATTERN.findall(cleaned)))

    operations: List[str] = []
    for match in CALL_PATTERN.finditer(cleaned):
        name = match.group(1)
        if not is_contract_call(_receiver(cleaned, match.start()), name):
            continue
        if operations and operations[-1] == name:
            continue
        operations.append(name)
    return operations


def rename_operation_calls(code: str, name: str, replacement: str) -> str:
    """Rewrite calls of `name` made on the target contract; helper calls stay untouched"""
    is_contract_call = _contract_call_filter(contract_instances(code))

    def swap(match):
        if not is_contract_call(_receiver(code, match.start()), name):
            return match.group(0)
        return f"{match.group(1)}{replacement}{match.group(2)}"

    return re.sub(rf'(\.\s*){re.escape(name)}(\s*\()', swap, code)
