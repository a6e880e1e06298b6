"""
Foundry sandbox runtime - Ephemeral forked projects driven through the forge CLI

Each fork is a throwaway Foundry project in a temporary directory. deploy()
compiles the proof-of-concept, invoke() runs a generated test that deploys it
on a fork pinned at the requested block and calls its attack entrypoint, and
teardown() removes the project.
"""

import asyncio
import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple
import logging

from eth_utils import is_address, to_checksum_address

from ..config import Config
from ..errors import ExternalServiceFailure, SandboxFailure
from ..interfaces import ForkHandle, Invocation, SandboxRuntime
from ..pricing.tokens import TokenRegistry


# Address of the first contract created by forge's default test contract
FORGE_FIRST_CREATE_ADDRESS = "0x5615dEB798BB3E4dFa0139dFa1b3D433Cc23b72f"

ATTACKER_FUNDING_WEI = 100 * 10 ** 18
ATTACK_VALUE_WEI = 10 ** 18

TRACE_MARKERS = ("├─", "└─", "│")

GAS_PATTERN = re.compile(r"gas:\s*(\d+)", re.IGNORECASE)
PROFIT_PATTERN = re.compile(r"PROFIT_WEI:\s*(-?\d+)")
TOKEN_DELTA_PATTERN = re.compile(r"TOKEN_DELTA (0x[a-fA-F0-9]{40}):\s*(-?\d+)")
REVERT_PATTERN = re.compile(r"ATTACK_REVERTED:\s*(.+)")


def parse_forge_output(output: str) -> Dict:
    """
    Pull the measurements emitted by the generated test out of forge output
    """
    profit_match = PROFIT_PATTERN.search(output)
    gas_match = GAS_PATTERN.search(output)
    revert_match = REVERT_PATTERN.search(output)

    token_deltas = {}
    for address, delta in TOKEN_DELTA_PATTERN.findall(output):
        token_deltas[to_checksum_address(address)] = int(delta)

    return {
        "passed": "[PASS]" in output and "[FAIL" not in output,
        "balance_delta": int(profit_match.group(1)) if profit_match else 0,
        "gas_used": int(gas_match.group(1)) if gas_match else 0,
        "token_deltas": token_deltas,
        "revert_reason": revert_match.group(1).strip() if revert_match else None,
        "trace": [line.rstrip() for line in output.splitlines()
                  if any(marker in line for marker in TRACE_MARKERS)],
    }


def checksum_all_addresses(code: str) -> str:
    """Find and checksum all addresses in the code"""

    def checksum_match(match):
        address = match.group(0)
        return to_checksum_address(address) if is_address(address) else address

    return re.sub(r"0x[a-fA-F0-9]{40}\b", checksum_match, code)


class ForgeSandboxRuntime(SandboxRuntime):
    """
    SandboxRuntime backed by the Foundry toolchain

    Requires forge on PATH (or Config.foundry_path) and an archive RPC endpoint
    for the forked chain.
    """

    def __init__(self, config: Config):
        self.config = config
        self.forge = config.foundry_path or "forge"
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.version: Optional[str] = None
        self.live_forks: Set[str] = set()

    async def is_available(self) -> bool:
        """Check if Foundry is installed and accessible"""
        try:
            returncode, output = await self._run([self.forge, "--version"], timeout=30)
        except (SandboxFailure, FileNotFoundError, PermissionError) as e:
            self.logger.info(f"Foundry not available: {e}")
            return False

        if returncode != 0:
            self.logger.warning(f"Foundry check failed: {output.strip()}")
            return False

        self.version = output.strip().splitlines()[0] if output.strip() else "unknown"
        self.logger.info(f"Foundry found: {self.version}")
        return True

    async def create_fork(
        self,
        chain_id: int,
        block_number: Optional[int],
        target_address: Optional[str] = None
    ) -> ForkHandle:
        chain_config = self.config.get_chain_config(chain_id)
        rpc_url = chain_config.get("rpc_url") if chain_config else None
        if not rpc_url:
            raise ExternalServiceFailure(f"No RPC URL configured for chain {chain_id}")

        workdir = Path(tempfile.mkdtemp(prefix="a1_fork_"))
        try:
            returncode, output = await self._run(
                [self.forge, "init", str(workdir), "--no-git", "--quiet", "--force"],
                timeout=self.config.test_timeout
            )
            if returncode != 0:
                raise SandboxFailure(f"forge init failed: {output.strip()[:500]}")

            (workdir / "foundry.toml").write_text(self._create_foundry_config(rpc_url))
            for scaffold in ("src/Counter.sol", "test/Counter.t.sol", "script/Counter.s.sol"):
                (workdir / scaffold).unlink(missing_ok=True)
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise

        tracked = [t.address for t in TokenRegistry.get_stablecoins(chain_id)]
        wrapped = TokenRegistry.get_wrapped_native(chain_id)
        if wrapped:
            tracked.append(wrapped.address)

        handle = ForkHandle(
            id=str(uuid.uuid4()),
            chain_id=chain_id,
            block_number=block_number,
            workdir=str(workdir),
            target_address=to_checksum_address(target_address) if target_address else None,
            state={"rpc_url": rpc_url, "tracked_tokens": tracked},
        )
        self.live_forks.add(handle.id)
        self.logger.info(f"🍴 Fork {handle.id[:8]} ready for chain {chain_id} @ {block_number or 'latest'}")
        return handle

    def _create_foundry_config(self, rpc_url: str) -> str:
        """Create foundry.toml configuration"""
        return f"""[profile.default]
src = "src"
out = "out"
libs = ["lib"]
gas_limit = 30000000
optimizer = true
optimizer_runs = 200

[rpc_endpoints]
fork = "{rpc_url}"
"""

    async def deploy(self, handle: ForkHandle, source_template: str) -> str:
        workdir = self._workdir(handle)

        contract_names = re.findall(r"^\s*contract\s+(\w+)", source_template, re.MULTILINE)
        if not contract_names:
            raise SandboxFailure("Proof-of-concept source declares no contract")

        source = checksum_all_addresses(source_template)
        (workdir / "src" / "Exploit.sol").write_text(source)

        returncode, output = await self._run([self.forge, "build"], cwd=workdir,
                                             timeout=self.config.test_timeout)
        if returncode != 0:
            raise SandboxFailure(f"Compilation failed: {self._first_error(output)}")

        # The attack contract is the last one declared; helpers come first
        handle.state["contract_name"] = contract_names[-1]
        self.logger.info(f"🔨 Compiled {contract_names[-1]} in fork {handle.id[:8]}")
        return FORGE_FIRST_CREATE_ADDRESS

    async def invoke(self, handle: ForkHandle, deployed_address: str, entrypoint: str) -> Invocation:
        workdir = self._workdir(handle)
        contract_name = handle.state.get("contract_name")
        if not contract_name:
            raise SandboxFailure("invoke() called before deploy()")
        if not handle.target_address:
            raise SandboxFailure("Fork has no target address")

        test_code = self._create_exploit_test(
            contract_name, handle.target_address, entrypoint, handle.state.get("tracked_tokens", [])
        )
        (workdir / "test" / "Exploit.t.sol").write_text(test_code)

        cmd = [
            self.forge, "test",
            "--match-test", "testExploit",
            "-vvvv",
            "--fork-url", handle.state["rpc_url"],
        ]
        if handle.block_number is not None:
            cmd.extend(["--fork-block-number", str(handle.block_number)])

        self.logger.info(f"🚀 Running forge test for {contract_name}.{entrypoint}()")
        returncode, output = await self._run(cmd, cwd=workdir, timeout=self.config.test_timeout)

        parsed = parse_forge_output(output)
        if not parsed["passed"] and "PROFIT_WEI" not in output:
            raise SandboxFailure(f"forge test failed (exit {returncode}): {self._first_error(output)}")

        handle.state["revert_reason"] = parsed["revert_reason"]
        return Invocation(
            balance_delta=parsed["balance_delta"],
            gas_used=parsed["gas_used"],
            trace=parsed["trace"],
            token_deltas=parsed["token_deltas"],
        )

    def _create_exploit_test(self, contract_name: str, target_address: str,
                             entrypoint: str, tracked_tokens: List[str]) -> str:
        """Create Foundry test file that measures the attacker's balance delta"""
        tokens = ", ".join(to_checksum_address(t) for t in tracked_tokens)
        token_count = len(tracked_tokens)
        token_array = (
            f"address[{token_count}] memory tokens = [{tokens}];" if token_count
            else "address[0] memory tokens;"
        )

        return f'''// SPDX-License-Identifier: MIT
pragma solidity ^0.8.0;

import "forge-std/Test.sol";
import "../src/Exploit.sol";

interface IBalanceOf {{
    function balanceOf(address account) external view returns (uint256);
}}

contract ExploitTest is Test {{
    address public constant TARGET = {target_address};
    {contract_name} public exploitContract;

    function setUp() public {{
        vm.deal(address(this), {ATTACKER_FUNDING_WEI});
        exploitContract = new {contract_name}(TARGET);
    }}

    function _tokenBalance(address token) internal view returns (int256) {{
        (bool ok, bytes memory data) = token.staticcall(abi.encodeWithSelector(IBalanceOf.balanceOf.selector, address(this)));
        if (!ok || data.length < 32) return 0;
        return int256(abi.decode(data, (uint256)));
    }}

    function testExploit() public {{
        {token_array}
        int256[] memory before = new int256[](tokens.length);
        for (uint256 i = 0; i < tokens.length; i++) {{
            before[i] = _tokenBalance(tokens[i]);
        }}
        int256 initialBalance = int256(address(this).balance);

        try exploitContract.{entrypoint}{{value: {ATTACK_VALUE_WEI}}}() {{
        }} catch Error(string memory reason) {{
            emit log_named_string("ATTACK_REVERTED", reason);
        }} catch (bytes memory) {{
            emit log_named_string("ATTACK_REVERTED", "low-level revert");
        }}

        emit log_named_int("PROFIT_WEI", int256(address(this).balance) - initialBalance);
        for (uint256 i = 0; i < tokens.length; i++) {{
            int256 delta = _tokenBalance(tokens[i]) - before[i];
            if (delta != 0) {{
                emit log_named_int(string.concat("TOKEN_DELTA ", vm.toString(tokens[i])), delta);
            }}
        }}
    }}

    receive() external payable {{}}
}}
'''

    async def teardown(self, handle: ForkHandle) -> None:
        """Remove the fork's project directory"""
        self.live_forks.discard(handle.id)
        if not handle.workdir:
            return
        try:
            shutil.rmtree(handle.workdir)
            self.logger.debug(f"Cleaned up fork directory: {handle.workdir}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to cleanup {handle.workdir}: {e}")

    def _workdir(self, handle: ForkHandle) -> Path:
        if handle.id not in self.live_forks or not handle.workdir:
            raise SandboxFailure(f"Fork {handle.id} is not live")
        return Path(handle.workdir)

    @staticmethod
    def _first_error(output: str) -> str:
        for line in output.splitlines():
            if "Error" in line or "error" in line:
                return line.strip()[:300]
        return output.strip()[-300:]

    async def _run(self, cmd: List[str], cwd: Optional[Path] = None,
                   timeout: Optional[int] = None) -> Tuple[int, str]:
        """
        Run a forge command, killing it on timeout or cancellation

        Returns:
            (returncode, combined stdout/stderr)
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise SandboxFailure(f"{' '.join(cmd[:2])} timed out after {timeout}s")
        except asyncio.CancelledError:
            process.kill()
            await asyncio.shield(process.wait())
            raise

        return process.returncode, stdout.decode(errors="replace") + stderr.decode(errors="replace")
